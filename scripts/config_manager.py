#!/usr/bin/env python3
"""Configuration management CLI tool for the product ranker."""

import argparse
import sys

from product_ranker.config.utils import (
    validate_config,
    print_config_summary,
    export_config_to_file,
    get_config_value,
    get_environment,
    set_environment,
)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Product Ranker Configuration Manager")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("validate", help="Validate current configuration")
    subparsers.add_parser("summary", help="Print configuration summary")

    export_parser = subparsers.add_parser("export", help="Export configuration to file")
    export_parser.add_argument("output", help="Output file path")
    export_parser.add_argument("--format", choices=["yaml", "json"], default="yaml", help="Output format")

    get_parser = subparsers.add_parser("get", help="Print one configuration value")
    get_parser.add_argument("key", help="Dot-notation key, e.g. ranking.default_top_k")

    env_parser = subparsers.add_parser("env", help="Manage environment settings")
    env_parser.add_argument("--set", help="Load the configuration of another environment")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    try:
        if args.command == "validate":
            if validate_config():
                print("Configuration is valid")
            else:
                print("Configuration validation failed")
                sys.exit(1)

        elif args.command == "summary":
            print_config_summary()

        elif args.command == "export":
            export_config_to_file(args.output, args.format)

        elif args.command == "get":
            print(f"{args.key} = {get_config_value(args.key)}")

        elif args.command == "env":
            if args.set:
                set_environment(args.set)
                print(f"Environment set to: {args.set}")
                print_config_summary()
            else:
                print(f"Current environment: {get_environment()}")

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
