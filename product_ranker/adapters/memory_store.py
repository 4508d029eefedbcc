"""In-memory store used for tests, local runs and the CLI."""

import json
import logging
from dataclasses import replace
from datetime import datetime
from itertools import count
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np

from .base import CatalogStore
from ..models.core import (
    CatalogUploadJob, Embedding, EvaluationMetric, MetricType, Product, RankingWeights,
    SearchFilters, SearchLog, SearchResultExplanation, SessionInteraction
)
from ..utils.error_handling import StoreError


logger = logging.getLogger(__name__)


def _copy_product(product: Product) -> Product:
    return replace(product, features=list(product.features))


def _copy_embedding(embedding: Embedding) -> Embedding:
    return replace(embedding, vector=embedding.vector.copy())


class InMemoryCatalogStore(CatalogStore):
    """Dictionary-backed implementation of the store interface.

    Products keep insertion order, which makes candidate reads stable. Records
    handed out are copies, so callers cannot mutate stored history by accident.
    """

    def __init__(self, products: Optional[List[Product]] = None,
                 weights: Optional[RankingWeights] = None):
        self._products: Dict[int, Product] = {}
        self._embeddings: Dict[int, Embedding] = {}
        self._weights: List[RankingWeights] = []
        self._search_logs: List[SearchLog] = []
        self._explanations: Dict[int, List[SearchResultExplanation]] = {}
        self._interactions: List[SessionInteraction] = []
        self._metrics: List[EvaluationMetric] = []
        self._jobs: Dict[int, CatalogUploadJob] = {}

        self._weights_ids = count(1)
        self._log_ids = count(1)
        self._explanation_ids = count(1)
        self._interaction_ids = count(1)
        self._metric_ids = count(1)
        self._job_ids = count(1)

        for product in products or []:
            self.add_product(product)
        if weights is not None:
            self._store_weights(weights, activate=weights.is_active)

    # Synchronous seeding helpers

    def add_product(self, product: Product) -> None:
        self._products[product.id] = _copy_product(product)

    def add_embedding(self, embedding: Embedding) -> None:
        self._embeddings[embedding.product_id] = _copy_embedding(embedding)

    @classmethod
    def load_catalog_file(cls, path: Union[str, Path]) -> "InMemoryCatalogStore":
        """Build a store from a JSON catalog.

        The file holds either a list of raw product rows or an object with
        ``products`` and optional ``ranking_weights`` entries.
        """
        with open(path, "r", encoding="utf-8") as f:
            data: Any = json.load(f)

        rows = data if isinstance(data, list) else data.get("products", [])
        store = cls()
        skipped = 0
        for row in rows:
            try:
                store.add_product(Product.from_row(row))
            except (ValueError, TypeError) as e:
                skipped += 1
                logger.warning(f"Skipping catalog row: {e}")

        if isinstance(data, dict):
            for weights_row in data.get("ranking_weights", data.get("rankingWeights", [])):
                weights = RankingWeights.from_row(weights_row)
                store._store_weights(weights, activate=weights.is_active)

        logger.info(f"Loaded {len(store._products)} products from {path} ({skipped} rows skipped)")
        return store

    # Catalog

    async def get_products(self, filters: Optional[SearchFilters] = None) -> List[Product]:
        return [_copy_product(p) for p in self._products.values()
                if filters is None or filters.matches(p)]

    async def get_product(self, product_id: int) -> Optional[Product]:
        product = self._products.get(product_id)
        return _copy_product(product) if product is not None else None

    async def upsert_product(self, product: Product) -> None:
        self._products[product.id] = _copy_product(product)

    # Embeddings

    async def get_embedding(self, product_id: int) -> Optional[Embedding]:
        embedding = self._embeddings.get(product_id)
        return _copy_embedding(embedding) if embedding is not None else None

    async def upsert_embedding(self, product_id: int, vector: np.ndarray,
                               model: str, text_used: str) -> Embedding:
        embedding = Embedding(
            product_id=product_id,
            vector=np.array(vector, dtype=np.float64, copy=True),
            model=model,
            text_used=text_used,
            updated_at=datetime.now(),
        )
        self._embeddings[product_id] = embedding
        return _copy_embedding(embedding)

    # Ranking configuration

    async def get_active_ranking_weights(self) -> Optional[RankingWeights]:
        for weights in self._weights:
            if weights.is_active:
                return replace(weights)
        return None

    async def save_ranking_weights(self, weights: RankingWeights, activate: bool = False) -> RankingWeights:
        return replace(self._store_weights(weights, activate))

    def _store_weights(self, weights: RankingWeights, activate: bool) -> RankingWeights:
        stored = replace(weights, is_active=activate)
        if stored.id is None:
            stored.id = next(self._weights_ids)
        self._weights = [w for w in self._weights if w.id != stored.id]
        if activate:
            for other in self._weights:
                other.is_active = False
        self._weights.append(stored)
        return stored

    # Search logging

    async def insert_search_log(self, log: SearchLog) -> int:
        stored = replace(log, id=next(self._log_ids))
        self._search_logs.append(stored)
        return stored.id

    async def get_search_logs(self, session_id: Optional[str] = None) -> List[SearchLog]:
        return [replace(log) for log in self._search_logs
                if session_id is None or log.session_id == session_id]

    async def insert_search_result_explanations(self, log_id: int,
                                                rows: List[SearchResultExplanation]) -> None:
        stored = [replace(row, search_log_id=log_id, id=next(self._explanation_ids)) for row in rows]
        self._explanations.setdefault(log_id, []).extend(stored)

    async def get_search_result_explanations(self, log_id: int) -> List[SearchResultExplanation]:
        return [replace(row) for row in self._explanations.get(log_id, [])]

    async def update_explanation_clicked(self, log_id: int, product_id: int) -> bool:
        updated = False
        for row in self._explanations.get(log_id, []):
            if row.product_id == product_id:
                row.was_clicked = True
                updated = True
        return updated

    # Interactions

    async def insert_interaction(self, interaction: SessionInteraction) -> int:
        stored = replace(interaction, id=next(self._interaction_ids))
        self._interactions.append(stored)
        return stored.id

    async def get_interactions(self, session_id: Optional[str] = None) -> List[SessionInteraction]:
        return [replace(i) for i in self._interactions
                if session_id is None or i.session_id == session_id]

    # Evaluation

    async def insert_evaluation_metric(self, metric: EvaluationMetric) -> int:
        stored = replace(metric, id=next(self._metric_ids))
        self._metrics.append(stored)
        return stored.id

    async def get_evaluation_metrics(self, metric_type: Optional[MetricType] = None) -> List[EvaluationMetric]:
        return [replace(m) for m in self._metrics
                if metric_type is None or m.metric_type == metric_type]

    # Upload jobs

    async def create_upload_job(self, job: CatalogUploadJob) -> int:
        stored = replace(job, id=next(self._job_ids))
        self._jobs[stored.id] = stored
        return stored.id

    async def get_upload_job(self, job_id: int) -> Optional[CatalogUploadJob]:
        job = self._jobs.get(job_id)
        return replace(job) if job else None

    async def update_upload_job(self, job: CatalogUploadJob) -> None:
        if job.id not in self._jobs:
            raise StoreError(f"Unknown upload job {job.id}")
        self._jobs[job.id] = replace(job)
