"""Abstract interface of the relational store backing the ranker."""

from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from ..models.core import (
    CatalogUploadJob, Embedding, EvaluationMetric, MetricType, Product, RankingWeights,
    SearchFilters, SearchLog, SearchResultExplanation, SessionInteraction
)


class CatalogStore(ABC):
    """Read/write operations the ranker needs from the external store.

    The storage engine, schema and migrations belong to the store; the ranker
    only relies on these typed operations. Writes of a single record are
    expected to be atomic, and upserts are keyed on their natural id.
    """

    # Catalog

    @abstractmethod
    async def get_products(self, filters: Optional[SearchFilters] = None) -> List[Product]:
        """Return products matching the filters in a stable order."""
        pass

    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[Product]:
        pass

    @abstractmethod
    async def upsert_product(self, product: Product) -> None:
        pass

    # Embeddings

    @abstractmethod
    async def get_embedding(self, product_id: int) -> Optional[Embedding]:
        pass

    @abstractmethod
    async def upsert_embedding(self, product_id: int, vector: np.ndarray,
                               model: str, text_used: str) -> Embedding:
        """Insert or overwrite the embedding of one product."""
        pass

    # Ranking configuration

    @abstractmethod
    async def get_active_ranking_weights(self) -> Optional[RankingWeights]:
        """Return the single active configuration, or None if none is active."""
        pass

    @abstractmethod
    async def save_ranking_weights(self, weights: RankingWeights, activate: bool = False) -> RankingWeights:
        """Store a configuration; activating it deactivates every other one."""
        pass

    # Search logging

    @abstractmethod
    async def insert_search_log(self, log: SearchLog) -> int:
        pass

    @abstractmethod
    async def get_search_logs(self, session_id: Optional[str] = None) -> List[SearchLog]:
        """Return logs in creation order."""
        pass

    @abstractmethod
    async def insert_search_result_explanations(self, log_id: int,
                                                rows: List[SearchResultExplanation]) -> None:
        pass

    @abstractmethod
    async def get_search_result_explanations(self, log_id: int) -> List[SearchResultExplanation]:
        pass

    @abstractmethod
    async def update_explanation_clicked(self, log_id: int, product_id: int) -> bool:
        """Mark one explanation row as clicked; returns False if no row matched."""
        pass

    # Interactions

    @abstractmethod
    async def insert_interaction(self, interaction: SessionInteraction) -> int:
        pass

    @abstractmethod
    async def get_interactions(self, session_id: Optional[str] = None) -> List[SessionInteraction]:
        pass

    # Evaluation

    @abstractmethod
    async def insert_evaluation_metric(self, metric: EvaluationMetric) -> int:
        pass

    @abstractmethod
    async def get_evaluation_metrics(self, metric_type: Optional[MetricType] = None) -> List[EvaluationMetric]:
        pass

    # Upload jobs

    @abstractmethod
    async def create_upload_job(self, job: CatalogUploadJob) -> int:
        pass

    @abstractmethod
    async def get_upload_job(self, job_id: int) -> Optional[CatalogUploadJob]:
        pass

    @abstractmethod
    async def update_upload_job(self, job: CatalogUploadJob) -> None:
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
