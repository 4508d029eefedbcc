# Explainable product ranker - Main package

from .config.settings import config, config_manager
from .utils.logging import setup_logging, get_logger
from .models import (
    Product,
    Embedding,
    RankingWeights,
    SearchFilters,
    ScoredResult,
    SearchResponse,
    EvaluationMetric,
)

__version__ = "0.1.0"

__all__ = [
    "config",
    "config_manager",
    "setup_logging",
    "get_logger",
    "Product",
    "Embedding",
    "RankingWeights",
    "SearchFilters",
    "ScoredResult",
    "SearchResponse",
    "EvaluationMetric",
]
