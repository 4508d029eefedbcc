"""
Offline ranking-quality evaluation over logged searches and interactions.

Implements the standard IR metrics with binary relevance:
- Precision@K (denominator is always K)
- Recall@K (queries without known relevant items are excluded)
- NDCG@K (an ideal DCG of 0 counts as a perfect 1.0)
- MRR
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

import numpy as np

from ..adapters.base import CatalogStore
from ..config.settings import get_evaluation_config
from ..models.core import (
    EvaluationMetric, MetricType, SearchLog, SearchResultExplanation, SessionInteraction
)
from ..models.embedder import normalize_text
from ..utils.monitoring import PerformanceMonitor, get_performance_monitor


logger = logging.getLogger(__name__)


def precision_at_k(ranking: Sequence[int], relevant: Set[int], k: int = 10) -> float:
    if k <= 0:
        return 0.0
    hits = sum(1 for product_id in ranking[:k] if product_id in relevant)
    return hits / k


def recall_at_k(ranking: Sequence[int], relevant: Set[int], k: int = 10) -> Optional[float]:
    """Recall at K, or None when there are no known relevant items."""
    if not relevant:
        return None
    hits = sum(1 for product_id in ranking[:k] if product_id in relevant)
    return hits / len(relevant)


def dcg_at_k(relevance: Sequence[float], k: int = 10) -> float:
    """Discounted cumulative gain: sum of rel_i / log2(i + 1) for ranks i = 1..k."""
    if k <= 0:
        return 0.0
    rel = np.asarray(relevance[:k], dtype=np.float64)
    if rel.size == 0:
        return 0.0
    ranks = np.arange(1, rel.size + 1)
    return float(np.sum(rel / np.log2(ranks + 1)))


def ndcg_at_k(ranking: Sequence[int], relevant: Set[int], k: int = 10) -> float:
    """Normalized DCG with binary relevance.

    The ideal ordering places min(len(relevant), k) relevant items first.
    A query with no relevant items has an ideal DCG of 0 and is scored 1.0:
    nothing could have been ranked better. This is a convention, chosen so
    that queries without feedback do not drag the average down.
    """
    ideal = [1.0] * min(len(relevant), k)
    idcg = dcg_at_k(ideal, k)
    if idcg == 0.0:
        return 1.0
    gains = [1.0 if product_id in relevant else 0.0 for product_id in ranking[:k]]
    return dcg_at_k(gains, k) / idcg


def reciprocal_rank(ranking: Sequence[int], relevant: Set[int]) -> float:
    for rank, product_id in enumerate(ranking, start=1):
        if product_id in relevant:
            return 1.0 / rank
    return 0.0


def relevant_product_ids(log: SearchLog, interactions: Iterable[SessionInteraction]) -> Set[int]:
    """Products with a click-like interaction for the log's (session, query) pair."""
    query = normalize_text(log.query)
    return {
        interaction.product_id
        for interaction in interactions
        if interaction.interaction_type.is_relevance_signal
        and interaction.session_id == log.session_id
        and normalize_text(interaction.search_query) == query
    }


def group_interactions_by_log(logs: Sequence[SearchLog],
                              interactions: Iterable[SessionInteraction]) -> Dict[int, List[SessionInteraction]]:
    """Attach interactions to every log with the same session and query text."""
    by_pair: Dict[tuple, List[SessionInteraction]] = defaultdict(list)
    for interaction in interactions:
        if interaction.search_query is None:
            continue
        by_pair[(interaction.session_id, normalize_text(interaction.search_query))].append(interaction)

    return {
        log.id: list(by_pair.get((log.session_id, normalize_text(log.query)), []))
        for log in logs
    }


class EvaluationEngine:
    """Aggregates per-query metrics into one EvaluationMetric per metric type."""

    def __init__(self, cutoff: Optional[int] = None):
        evaluation_config = get_evaluation_config()
        self.cutoff = cutoff if cutoff is not None else int(evaluation_config.get("cutoff", 10))

    def evaluate(self, logs: Sequence[SearchLog],
                 explanations_by_log: Mapping[int, Sequence[SearchResultExplanation]],
                 interactions_by_log: Mapping[int, Sequence[SessionInteraction]]) -> List[EvaluationMetric]:
        """Compute NDCG, recall, precision and MRR over the given logs.

        Args:
            logs: Search logs to evaluate
            explanations_by_log: Returned result rows keyed by search log id
            interactions_by_log: Interactions keyed by search log id

        Returns:
            One metric per metric type, in the order NDCG, recall, precision, MRR
        """
        k = self.cutoff
        ndcgs: List[float] = []
        recalls: List[float] = []
        precisions: List[float] = []
        reciprocal_ranks: List[float] = []
        without_relevant = 0

        for log in logs:
            rows = sorted(explanations_by_log.get(log.id, []), key=lambda row: row.position)
            ranking = [row.product_id for row in rows]
            relevant = relevant_product_ids(log, interactions_by_log.get(log.id, []))

            ndcgs.append(ndcg_at_k(ranking, relevant, k))
            precisions.append(precision_at_k(ranking, relevant, k))
            reciprocal_ranks.append(reciprocal_rank(ranking, relevant))

            recall = recall_at_k(ranking, relevant, k)
            if recall is None:
                without_relevant += 1
            else:
                recalls.append(recall)

        query_count = len(logs)
        base_note = f"k={k}" if query_count else f"k={k}; no search logs to evaluate"
        recall_note = (f"{base_note}; excluded {without_relevant} queries with no known relevant items"
                       if without_relevant else base_note)

        metrics = [
            EvaluationMetric(MetricType.NDCG_AT_10, _mean(ndcgs), query_count, base_note),
            EvaluationMetric(MetricType.RECALL_AT_10, _mean(recalls), len(recalls), recall_note),
            EvaluationMetric(MetricType.PRECISION_AT_10, _mean(precisions), query_count, base_note),
            EvaluationMetric(MetricType.MRR, _mean(reciprocal_ranks), query_count, base_note),
        ]

        summary = ", ".join(f"{m.metric_type.value}={m.value:.4f}" for m in metrics)
        logger.info(f"Evaluation over {query_count} queries: {summary}")
        return metrics


def _mean(values: Sequence[float]) -> float:
    return float(np.mean(values)) if values else 0.0


class EvaluationRunner:
    """Loads durable logs from the store, evaluates them and appends the results."""

    def __init__(self, store: CatalogStore, engine: Optional[EvaluationEngine] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.store = store
        self.engine = engine or EvaluationEngine()
        self.monitor = monitor or get_performance_monitor()

    async def run(self) -> List[EvaluationMetric]:
        """Evaluate every fully written search log and store one row per metric."""
        async with self.monitor.measure_async_operation("evaluation_run"):
            logs = await self.store.get_search_logs()

            complete: List[SearchLog] = []
            explanations_by_log: Dict[int, List[SearchResultExplanation]] = {}
            for log in logs:
                rows = await self.store.get_search_result_explanations(log.id)
                if len(rows) != log.result_count:
                    logger.debug(f"Skipping search log {log.id}: {len(rows)} of "
                                 f"{log.result_count} result rows written")
                    continue
                complete.append(log)
                explanations_by_log[log.id] = rows

            interactions = await self.store.get_interactions()
            interactions_by_log = group_interactions_by_log(complete, interactions)

            metrics = self.engine.evaluate(complete, explanations_by_log, interactions_by_log)
            for metric in metrics:
                metric.id = await self.store.insert_evaluation_metric(metric)
                self.monitor.metrics_collector.set_gauge(f"evaluation_{metric.metric_type.name.lower()}",
                                                         metric.value)

        skipped = len(logs) - len(complete)
        if skipped:
            logger.warning(f"Skipped {skipped} incompletely written search logs")
        return metrics
