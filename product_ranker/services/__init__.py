"""Services module for the product ranker."""

from .product_index import ProductIndex, CandidateSet, IndexSnapshot
from .ranking_engine import RankingEngine, FactorScorer, cosine_similarity, validate_weights
from .explanation import ExplanationGenerator
from .evaluation import EvaluationEngine, EvaluationRunner
from .embedding_refresh import EmbeddingRefreshJob, UploadJobRunner
from .search_service import SearchService

__all__ = [
    'ProductIndex',
    'CandidateSet',
    'IndexSnapshot',
    'RankingEngine',
    'FactorScorer',
    'cosine_similarity',
    'validate_weights',
    'ExplanationGenerator',
    'EvaluationEngine',
    'EvaluationRunner',
    'EmbeddingRefreshJob',
    'UploadJobRunner',
    'SearchService',
]
