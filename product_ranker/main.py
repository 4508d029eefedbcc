"""Command-line entry point for the product ranker."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .adapters.memory_store import InMemoryCatalogStore
from .config.settings import config_manager
from .config.utils import print_config_summary, validate_config
from .models.core import Availability, InteractionType, RankingWeights, SearchFilters
from .services.embedding_refresh import EmbeddingRefreshJob
from .services.evaluation import EvaluationRunner
from .services.search_service import SearchService
from .utils.error_handling import RankerError
from .utils.logging import setup_logging


class ProductRankerApp:
    """Runs ranker operations against a JSON catalog held in memory."""

    def __init__(self, config_path: Optional[str] = None, environment: Optional[str] = None,
                 log_level: Optional[str] = None):
        """
        Initialize the application.

        Args:
            config_path: Configuration directory to load instead of the default one
            environment: Environment name (development, production, etc.)
            log_level: Log level overriding the configuration
        """
        if config_path or environment:
            if config_path:
                config_manager.config_dir = Path(config_path)
            if environment:
                config_manager.environment = environment
            config_manager.reload()

        self.config = config_manager.config
        self.logger = setup_logging(level=log_level)

    async def load_store(self, catalog_path: str) -> InMemoryCatalogStore:
        """Load a catalog, make sure weights are active and embed every product."""
        store = InMemoryCatalogStore.load_catalog_file(catalog_path)
        if await store.get_active_ranking_weights() is None:
            self.logger.info("Catalog has no active ranking weights; using the defaults")
            await store.save_ranking_weights(RankingWeights(), activate=True)
        return store

    async def refresh(self, catalog_path: str) -> Dict[str, Any]:
        store = InMemoryCatalogStore.load_catalog_file(catalog_path)
        report = await EmbeddingRefreshJob(store).run()
        return {
            "total": report.total,
            "embedded": report.embedded,
            "failed": report.failed,
            "failures": {str(k): v for k, v in report.failures.items()},
            "model": report.model,
        }

    async def search(self, catalog_path: str, query: str, session_id: str,
                     filters: Optional[SearchFilters] = None, top_k: Optional[int] = None) -> Dict[str, Any]:
        store = await self.load_store(catalog_path)
        service = SearchService(store)
        await EmbeddingRefreshJob(store, embedder=service.embedder).run()

        response = await service.search(query, session_id, filters=filters, top_k=top_k)
        return {
            "query": response.query,
            "weights": response.weights_name,
            "total_candidates": response.total_candidates,
            "response_time_ms": response.response_time_ms,
            "warnings": response.warnings,
            "results": [
                {
                    "position": item.position,
                    "product_id": item.product.id,
                    "title": item.product.title,
                    "final_score": round(item.final_score, 6),
                    "factor_scores": {k: round(v, 6) for k, v in item.factor_scores.items()},
                    "matched_terms": item.matched_terms,
                    "explanation": item.explanation,
                }
                for item in response.results
            ],
        }

    async def evaluate(self, catalog_path: str, sessions_path: str) -> List[Dict[str, Any]]:
        """Replay logged sessions (query plus clicked product ids) and evaluate the rankings."""
        store = await self.load_store(catalog_path)
        service = SearchService(store)
        await EmbeddingRefreshJob(store, embedder=service.embedder).run()

        with open(sessions_path, "r", encoding="utf-8") as f:
            sessions = json.load(f)

        for index, entry in enumerate(sessions):
            session_id = str(entry.get("session_id", f"replay-{index}"))
            query = entry["query"]
            response = await service.search(query, session_id)
            positions = {item.product.id: item.position for item in response.results}
            for product_id in entry.get("clicks", []):
                await service.record_interaction(
                    session_id, int(product_id), InteractionType.SEARCH_CLICK,
                    search_query=query, position=positions.get(int(product_id)),
                )

        metrics = await EvaluationRunner(store).run()
        return [
            {
                "metric": m.metric_type.value,
                "value": round(m.value, 6),
                "query_count": m.query_count,
                "notes": m.notes,
            }
            for m in metrics
        ]


def _filters_from_args(args: argparse.Namespace) -> Optional[SearchFilters]:
    filters = SearchFilters(
        category=args.category,
        brand=args.brand,
        min_price=args.min_price,
        max_price=args.max_price,
        availability=[Availability(a) for a in args.availability] if args.availability else None,
        min_rating=args.min_rating,
    )
    return filters if filters.to_dict() else None


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the command-line argument parser.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="product-ranker",
        description="Explainable product ranking with offline evaluation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s search "red leather wallet" --catalog catalog.json
  %(prog)s search wallet --catalog catalog.json --category accessories --top-k 5
  %(prog)s refresh --catalog catalog.json
  %(prog)s evaluate --catalog catalog.json --sessions sessions.json
  %(prog)s validate-config --environment production
        """
    )

    parser.add_argument("--config", "-c", type=str,
                        help="Path to configuration directory (default: ./config)")
    parser.add_argument("--environment", "--env", "-e", type=str,
                        help="Environment name (development, production, etc.)")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Set logging level (overrides configuration)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose logging (equivalent to --log-level DEBUG)")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Suppress non-error output (equivalent to --log-level ERROR)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    search_parser = subparsers.add_parser("search", help="Rank the catalog against a query")
    search_parser.add_argument("query", help="Query text")
    search_parser.add_argument("--catalog", required=True, help="JSON catalog file")
    search_parser.add_argument("--session", default="cli", help="Session identifier")
    search_parser.add_argument("--top-k", type=int, help="Number of results")
    search_parser.add_argument("--category", help="Only products in this category")
    search_parser.add_argument("--brand", help="Only products of this brand")
    search_parser.add_argument("--min-price", type=float, help="Minimum price")
    search_parser.add_argument("--max-price", type=float, help="Maximum price")
    search_parser.add_argument("--min-rating", type=float, help="Minimum rating")
    search_parser.add_argument("--availability", nargs="+", choices=[a.value for a in Availability],
                               help="Allowed availability values")

    refresh_parser = subparsers.add_parser("refresh", help="Embed every catalog product")
    refresh_parser.add_argument("--catalog", required=True, help="JSON catalog file")

    evaluate_parser = subparsers.add_parser("evaluate", help="Replay sessions and compute ranking metrics")
    evaluate_parser.add_argument("--catalog", required=True, help="JSON catalog file")
    evaluate_parser.add_argument("--sessions", required=True,
                                 help="JSON list of {session_id, query, clicks} entries")

    subparsers.add_parser("validate-config", help="Validate and summarize the configuration")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main application entry point with CLI argument parsing.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    log_level = args.log_level
    if args.verbose:
        log_level = "DEBUG"
    elif args.quiet:
        log_level = "ERROR"

    try:
        app = ProductRankerApp(config_path=args.config, environment=args.environment, log_level=log_level)

        if args.command == "validate-config":
            if not validate_config():
                return 1
            print_config_summary()
            return 0

        if args.command == "search":
            output = asyncio.run(app.search(args.catalog, args.query, args.session,
                                            filters=_filters_from_args(args), top_k=args.top_k))
        elif args.command == "refresh":
            output = asyncio.run(app.refresh(args.catalog))
        else:
            output = asyncio.run(app.evaluate(args.catalog, args.sessions))

        print(json.dumps(output, indent=2))
        return 0

    except KeyboardInterrupt:
        print("\nApplication interrupted by user")
        return 130
    except (RankerError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
