"""Retrieval and scoring engine combining semantic relevance with business signals."""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from ..config.settings import get_ranking_config
from ..models.core import (
    Availability, Candidate, FactorScores, Product, RankingFactor, RankingWeights, ScoredResult
)
from ..utils.error_handling import (
    ConfigurationError, DataIntegrityError, ErrorContext, ErrorHandler, get_error_handler
)


logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0

AVAILABILITY_LEVELS = {
    Availability.IN_STOCK: 1.0,
    Availability.LOW_STOCK: 0.5,
    Availability.OUT_OF_STOCK: 0.0,
}


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero norm."""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / norm, -1.0, 1.0))


def cosine_similarities(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between ``query`` and every row of ``matrix``.

    Rows with zero norm (and every row when the query has zero norm) get 0.0.
    """
    query = np.asarray(query, dtype=np.float64)
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(matrix.shape[0], dtype=np.float64)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    sims = np.zeros_like(dots)
    nonzero = norms > 0
    sims[nonzero] = dots[nonzero] / norms[nonzero]
    return np.clip(sims, -1.0, 1.0)


def validate_weights(weights: RankingWeights, tolerance: float = 1e-3) -> List[str]:
    """Check a weights configuration before it is used for scoring.

    Returns:
        Warning messages; empty when the weights sum to 1 within tolerance

    Raises:
        ConfigurationError: If any weight is negative or not finite
    """
    values = weights.as_dict()
    for factor, value in values.items():
        if not math.isfinite(value):
            raise ConfigurationError(f"Ranking weight '{factor.value}' of '{weights.name}' is not finite")
        if value < 0:
            raise ConfigurationError(
                f"Ranking weight '{factor.value}' of '{weights.name}' is negative ({value})"
            )

    warnings = []
    total = weights.total
    if abs(total - 1.0) > tolerance:
        message = (f"Ranking weights '{weights.name}' sum to {total:.4f}, expected 1.0 "
                   f"(tolerance {tolerance})")
        warnings.append(message)
    return warnings


class FactorScorer:
    """Computes the five per-factor scores, each within [0, 1]."""

    def __init__(self, recency_half_life_days: float = 90.0, recency_floor: float = 1e-6,
                 stock_reference: float = 100.0, missing_price_score: float = 0.5):
        """Initialize the factor scorer.

        Args:
            recency_half_life_days: Age at which the recency score halves
            recency_floor: Smallest recency score; keeps old products above zero
            stock_reference: Stock quantity at which the quantity ratio saturates
            missing_price_score: Price score of products without a price
        """
        if recency_half_life_days <= 0:
            raise ValueError("recency_half_life_days must be positive")
        if stock_reference <= 0:
            raise ValueError("stock_reference must be positive")
        self.recency_half_life_days = recency_half_life_days
        self.recency_floor = recency_floor
        self.stock_reference = stock_reference
        self.missing_price_score = missing_price_score

    @staticmethod
    def semantic(cosine: float, zero_norm: bool = False) -> float:
        """Rescale cosine similarity from [-1, 1] to [0, 1]; zero-norm vectors score 0."""
        if zero_norm:
            return 0.0
        return float(min(max((cosine + 1.0) / 2.0, 0.0), 1.0))

    @staticmethod
    def rating(product: Product) -> float:
        if product.rating is None:
            return 0.0
        return float(min(max(product.rating / 5.0, 0.0), 1.0))

    def prices(self, products: Sequence[Product]) -> List[float]:
        """Inverse min-max price scores within the candidate set."""
        known = [p.price for p in products if p.price is not None]
        if not known:
            return [self.missing_price_score] * len(products)

        low, high = min(known), max(known)
        spread = high - low
        scores = []
        for product in products:
            if product.price is None:
                scores.append(self.missing_price_score)
            elif spread <= 0:
                scores.append(1.0)
            else:
                scores.append(1.0 - (product.price - low) / spread)
        return scores

    def stock(self, product: Product) -> float:
        level = AVAILABILITY_LEVELS[product.availability]
        if product.stock_quantity is None:
            ratio = 1.0
        else:
            ratio = min(max(product.stock_quantity, 0) / self.stock_reference, 1.0)
        return float(min(max(level * ratio, 0.0), 1.0))

    def recency(self, product: Product, now: datetime) -> float:
        timestamp = product.updated_at or product.created_at
        if timestamp is None:
            return self.recency_floor

        if timestamp.tzinfo is not None and now.tzinfo is None:
            now = now.astimezone(timestamp.tzinfo)
        elif timestamp.tzinfo is None and now.tzinfo is not None:
            timestamp = timestamp.astimezone(now.tzinfo)

        age_days = max((now - timestamp).total_seconds() / SECONDS_PER_DAY, 0.0)
        decayed = 0.5 ** (age_days / self.recency_half_life_days)
        return float(min(max(decayed, self.recency_floor), 1.0))


class RankingEngine:
    """Scores candidates against a query embedding and orders them.

    Final score = alpha*semantic + beta*rating + gamma*price + delta*stock + epsilon*recency.
    Results are ordered by final score descending, then product id ascending.
    Scores are compared relative to the weight total, and scores closer than
    ``10**-score_precision`` to the first score of their group count as tied.
    """

    def __init__(self, scorer: Optional[FactorScorer] = None, weight_tolerance: Optional[float] = None,
                 score_precision: Optional[int] = None, default_top_k: Optional[int] = None,
                 error_handler: Optional[ErrorHandler] = None):
        ranking_config = get_ranking_config()

        self.scorer = scorer or FactorScorer(
            recency_half_life_days=float(ranking_config.get("recency_half_life_days", 90.0)),
            recency_floor=float(ranking_config.get("recency_floor", 1e-6)),
            stock_reference=float(ranking_config.get("stock_reference", 100)),
            missing_price_score=float(ranking_config.get("missing_price_score", 0.5)),
        )
        self.weight_tolerance = (weight_tolerance if weight_tolerance is not None
                                 else float(ranking_config.get("weight_sum_tolerance", 1e-3)))
        self.score_precision = (score_precision if score_precision is not None
                                else int(ranking_config.get("score_precision", 6)))
        self.default_top_k = (default_top_k if default_top_k is not None
                              else int(ranking_config.get("default_top_k", 10)))
        self.error_handler = error_handler or get_error_handler()

    def rank(self, query_embedding: np.ndarray, candidates: Sequence[Candidate],
             weights: RankingWeights, top_k: Optional[int] = None,
             now: Optional[datetime] = None, matrix: Optional[np.ndarray] = None) -> List[ScoredResult]:
        """Score, order and truncate candidates.

        Args:
            query_embedding: Embedding of the query text
            candidates: Candidate set (may be empty)
            weights: Weights snapshot used for every candidate of this call
            top_k: Number of results to keep (defaults to the configured top-k)
            now: Reference time for recency (defaults to the current time)
            matrix: Optional precomputed embedding matrix, one row per candidate

        Returns:
            Scored results with 1-based positions

        Raises:
            ConfigurationError: If the weights contain a negative value
        """
        top_k = self.default_top_k if top_k is None else top_k
        if top_k <= 0:
            return []

        scored = self.order(self.score_candidates(query_embedding, candidates, weights,
                                                  now=now, matrix=matrix), weights)

        ranked = scored[:top_k]
        for position, result in enumerate(ranked, start=1):
            result.position = position

        logger.debug(f"Ranked {len(scored)} candidates, returning top {len(ranked)}")
        return ranked

    def score_candidates(self, query_embedding: np.ndarray, candidates: Sequence[Candidate],
                         weights: RankingWeights, now: Optional[datetime] = None,
                         matrix: Optional[np.ndarray] = None) -> List[ScoredResult]:
        """Score candidates without ordering them."""
        for warning in validate_weights(weights, self.weight_tolerance):
            logger.warning(warning)
        weight_values = weights.as_dict()
        now = now or datetime.now()

        query = np.asarray(query_embedding, dtype=np.float64).ravel()
        if matrix is not None and matrix.shape == (len(candidates), query.shape[0]):
            eligible = list(candidates)
        else:
            eligible = self._matching_dimension(query, candidates)
            matrix = np.vstack([c.embedding.vector for c in eligible]) if eligible else None
        if not eligible:
            return []

        sims = cosine_similarities(query, matrix)
        zero_rows = (np.linalg.norm(matrix, axis=1) == 0) | (np.linalg.norm(query) == 0)
        price_scores = self.scorer.prices([c.product for c in eligible])

        results = []
        for index, candidate in enumerate(eligible):
            product = candidate.product
            factors = FactorScores(
                semantic=self.scorer.semantic(float(sims[index]), bool(zero_rows[index])),
                rating=self.scorer.rating(product),
                price=price_scores[index],
                stock=self.scorer.stock(product),
                recency=self.scorer.recency(product, now),
            )
            contributions = {
                factor: weight_values[factor] * factors.get(factor)
                for factor in RankingFactor
            }
            results.append(ScoredResult(
                product=product,
                factors=factors,
                contributions=contributions,
                final_score=float(sum(contributions.values())),
                cosine_similarity=float(sims[index]),
            ))
        return results

    def order(self, results: Sequence[ScoredResult], weights: RankingWeights) -> List[ScoredResult]:
        """Order results by score descending, then product id ascending among ties.

        Scores are divided by the weight total before comparing, so scaling every
        weight by the same positive constant keeps the order. A tie group starts at
        its highest score and takes every following score within
        ``10**-score_precision`` of it.
        """
        scale = weights.total if weights.total > 0 else 1.0
        tolerance = 10.0 ** -self.score_precision
        by_score = sorted(results, key=lambda r: (-r.final_score / scale, r.product.id))

        ordered: List[ScoredResult] = []
        group: List[ScoredResult] = []
        for result in by_score:
            if group and (group[0].final_score - result.final_score) / scale > tolerance:
                ordered.extend(sorted(group, key=lambda r: r.product.id))
                group = []
            group.append(result)
        ordered.extend(sorted(group, key=lambda r: r.product.id))
        return ordered

    def _matching_dimension(self, query: np.ndarray, candidates: Sequence[Candidate]) -> List[Candidate]:
        eligible = []
        for candidate in candidates:
            embedding = candidate.embedding
            if embedding.vector.ndim == 1 and embedding.dimension == query.shape[0]:
                eligible.append(candidate)
                continue

            error = DataIntegrityError(
                f"Candidate {candidate.product.id} has embedding dimension {embedding.dimension}, "
                f"query has {query.shape[0]}",
                product_id=candidate.product.id,
                expected_dimension=int(query.shape[0]),
                actual_dimension=embedding.dimension,
            )
            self.error_handler.handle_error(error, ErrorContext(
                component="RankingEngine",
                operation="score_candidates",
                product_id=candidate.product.id,
            ))
        return eligible

    def get_configuration(self) -> Dict[str, Any]:
        return {
            "recency_half_life_days": self.scorer.recency_half_life_days,
            "recency_floor": self.scorer.recency_floor,
            "stock_reference": self.scorer.stock_reference,
            "missing_price_score": self.scorer.missing_price_score,
            "weight_tolerance": self.weight_tolerance,
            "score_precision": self.score_precision,
            "default_top_k": self.default_top_k,
        }
