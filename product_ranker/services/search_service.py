"""Search orchestration: embed, retrieve, rank, explain and log."""

import logging
import time
from datetime import datetime
from typing import List, Optional, Union

from ..adapters.base import CatalogStore
from ..config.settings import get_search_config
from ..models.core import (
    InteractionType, RankedProduct, SearchFilters, SearchLog, SearchResponse, SessionInteraction
)
from ..models.embedder import Embedder, create_embedder, normalize_text
from ..utils.error_handling import ConfigurationError
from ..utils.monitoring import PerformanceMonitor, get_performance_monitor
from .explanation import ExplanationGenerator
from .product_index import ProductIndex
from .ranking_engine import RankingEngine, validate_weights


logger = logging.getLogger(__name__)


class SearchService:
    """Entry point for queries and interaction events.

    The active ranking weights are read from the store once per query, so
    every candidate of that query is scored under the same configuration and
    operator edits take effect on the next query.
    """

    def __init__(self, store: CatalogStore, embedder: Optional[Embedder] = None,
                 ranking_engine: Optional[RankingEngine] = None,
                 explanation_generator: Optional[ExplanationGenerator] = None,
                 product_index: Optional[ProductIndex] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        """Initialize the search service.

        Args:
            store: Store holding the catalog, weights and logs
            embedder: Query embedder; must match the embedder used for the catalog
            ranking_engine: Optional scoring engine
            explanation_generator: Optional explanation generator
            product_index: Optional candidate index
            monitor: Optional performance monitor
        """
        search_config = get_search_config()

        self.store = store
        self.embedder = embedder or create_embedder()
        self.ranking_engine = ranking_engine or RankingEngine()
        self.explanation_generator = explanation_generator or ExplanationGenerator()
        self.product_index = product_index or ProductIndex(
            store, self.embedder.dimension, use_snapshot=search_config.get("snapshot_cache", False)
        )
        self.monitor = monitor or get_performance_monitor()
        self.store_query_embedding = search_config.get("store_query_embedding", True)
        self.max_top_k = int(search_config.get("max_top_k", 100))

    async def search(self, query: str, session_id: str, filters: Optional[SearchFilters] = None,
                     top_k: Optional[int] = None, now: Optional[datetime] = None) -> SearchResponse:
        """Rank the catalog against a query and log the returned results.

        Args:
            query: Query text
            session_id: Client session identifier
            filters: Optional candidate pre-filters
            top_k: Number of results (defaults to the configured top-k)
            now: Reference time for recency scoring

        Returns:
            Ordered, explained results

        Raises:
            ValueError: If the query is empty or top_k is not positive
            ConfigurationError: If no ranking weights are active or a weight is negative
            EmbeddingFailure: If the query cannot be embedded
        """
        if not query or not query.strip():
            raise ValueError("Query must not be empty")

        top_k = self.ranking_engine.default_top_k if top_k is None else top_k
        if top_k <= 0:
            raise ValueError(f"top_k must be positive, got {top_k}")

        warnings: List[str] = []
        if top_k > self.max_top_k:
            warnings.append(f"top_k {top_k} capped at {self.max_top_k}")
            top_k = self.max_top_k

        start_time = time.perf_counter()
        async with self.monitor.measure_async_operation("search"):
            weights = await self.store.get_active_ranking_weights()
            if weights is None:
                raise ConfigurationError("No active ranking weights configured")
            warnings.extend(validate_weights(weights, self.ranking_engine.weight_tolerance))

            query_vector = await self.embedder.embed(query)
            candidate_set = await self.product_index.materialize(filters)
            results = self.ranking_engine.rank(query_vector, candidate_set.candidates, weights,
                                               top_k=top_k, now=now, matrix=candidate_set.matrix)
            rows = self.explanation_generator.annotate(results, query)

            response_time_ms = int(round((time.perf_counter() - start_time) * 1000))
            log = SearchLog(
                session_id=session_id,
                query=query,
                result_count=len(results),
                response_time_ms=response_time_ms,
                filters=filters.to_dict() if filters else {},
                query_embedding=query_vector.tolist() if self.store_query_embedding else None,
            )
            log_id = await self.store.insert_search_log(log)
            await self.store.insert_search_result_explanations(log_id, rows)

        self.monitor.metrics_collector.record_histogram("search_candidates", len(candidate_set.candidates))
        logger.info(f"Search '{query}' (session {session_id}): {len(results)} results from "
                    f"{len(candidate_set.candidates)} candidates in {response_time_ms} ms")

        return SearchResponse(
            query=query,
            results=[
                RankedProduct(
                    product=result.product,
                    position=result.position,
                    final_score=result.final_score,
                    factor_scores=result.factors.as_dict(),
                    matched_terms=row.matched_terms,
                    explanation=row.explanation,
                )
                for result, row in zip(results, rows)
            ],
            search_log_id=log_id,
            response_time_ms=response_time_ms,
            total_candidates=len(candidate_set.candidates),
            weights_name=weights.name,
            warnings=warnings,
        )

    async def record_interaction(self, session_id: str, product_id: int,
                                 interaction_type: Union[InteractionType, str],
                                 search_query: Optional[str] = None,
                                 position: Optional[int] = None) -> SessionInteraction:
        """Append an interaction event.

        Click-like events that name their query also mark the product as
        clicked on the most recent search of that session and query that
        returned it.
        """
        if not isinstance(interaction_type, InteractionType):
            interaction_type = InteractionType(interaction_type)

        interaction = SessionInteraction(
            session_id=session_id,
            product_id=product_id,
            interaction_type=interaction_type,
            search_query=search_query,
            position=position,
        )
        interaction.id = await self.store.insert_interaction(interaction)
        self.monitor.metrics_collector.increment_counter(f"interaction_{interaction_type.value}")

        if interaction_type.is_relevance_signal and search_query:
            log_id = await self._mark_clicked(session_id, product_id, search_query)
            if log_id is None:
                logger.debug(f"No logged search of '{search_query}' in session {session_id} "
                             f"returned product {product_id}")

        return interaction

    async def _mark_clicked(self, session_id: str, product_id: int, search_query: str) -> Optional[int]:
        query = normalize_text(search_query)
        logs = await self.store.get_search_logs(session_id)
        for log in reversed(logs):
            if normalize_text(log.query) != query:
                continue
            if await self.store.update_explanation_clicked(log.id, product_id):
                return log.id
        return None
