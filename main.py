#!/usr/bin/env python3
"""Entry point for the product ranker application."""

import sys

if __name__ == "__main__":
    from product_ranker.main import main
    sys.exit(main())
