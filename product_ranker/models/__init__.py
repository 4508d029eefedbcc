# Data models package

from .core import (
    Availability,
    InteractionType,
    MetricType,
    UploadJobStatus,
    RankingFactor,
    Product,
    Embedding,
    RankingWeights,
    SearchFilters,
    Candidate,
    FactorScores,
    ScoredResult,
    SearchLog,
    SearchResultExplanation,
    SessionInteraction,
    EvaluationMetric,
    CatalogUploadJob,
    RankedProduct,
    SearchResponse,
    RefreshReport,
)
from .embedder import Embedder, HashingEmbedder, HttpEmbedder, create_embedder

__all__ = [
    "Availability",
    "InteractionType",
    "MetricType",
    "UploadJobStatus",
    "RankingFactor",
    "Product",
    "Embedding",
    "RankingWeights",
    "SearchFilters",
    "Candidate",
    "FactorScores",
    "ScoredResult",
    "SearchLog",
    "SearchResultExplanation",
    "SessionInteraction",
    "EvaluationMetric",
    "CatalogUploadJob",
    "RankedProduct",
    "SearchResponse",
    "RefreshReport",
    "Embedder",
    "HashingEmbedder",
    "HttpEmbedder",
    "create_embedder",
]
