"""Tests for the retrieval and scoring engine."""

import numpy as np
import pytest
from datetime import datetime, timedelta

from product_ranker.models.core import (
    Availability, Candidate, Embedding, FactorScores, Product, RankingFactor, RankingWeights,
    ScoredResult
)
from product_ranker.models.embedder import HashingEmbedder, build_embedding_text
from product_ranker.services.ranking_engine import (
    FactorScorer, RankingEngine, cosine_similarities, cosine_similarity, validate_weights
)
from product_ranker.utils.error_handling import ConfigurationError, ErrorHandler


NOW = datetime(2025, 1, 1, 12, 0, 0)
EMBEDDER = HashingEmbedder(dimension=384)


def make_product(product_id: int, title: str, **overrides) -> Product:
    fields = dict(
        id=product_id, title=title, price=10.0, rating=4.0,
        availability=Availability.IN_STOCK, stock_quantity=100,
        created_at=NOW, updated_at=NOW,
    )
    fields.update(overrides)
    return Product(**fields)


def make_candidate(product: Product, embedder: HashingEmbedder = EMBEDDER) -> Candidate:
    text = build_embedding_text(product)
    return Candidate(product, Embedding(product.id, embedder.embed_sync(text), embedder.model_name, text))


@pytest.fixture
def engine():
    """Ranking engine with explicit parameters."""
    return RankingEngine(
        scorer=FactorScorer(recency_half_life_days=90.0, recency_floor=1e-6,
                            stock_reference=100, missing_price_score=0.5),
        weight_tolerance=1e-3,
        score_precision=6,
        default_top_k=10,
        error_handler=ErrorHandler(),
    )


class TestCosineSimilarity:
    """Test cases for cosine similarity helpers."""

    def test_bounds_for_random_vectors(self):
        rng = np.random.default_rng(7)
        for _ in range(50):
            a, b = rng.normal(size=16), rng.normal(size=16)
            assert -1.0 <= cosine_similarity(a, b) <= 1.0

    def test_identical_and_opposite(self):
        v = np.array([1.0, 2.0, 3.0])
        assert cosine_similarity(v, v) == pytest.approx(1.0)
        assert cosine_similarity(v, -v) == pytest.approx(-1.0)

    def test_zero_norm_gives_zero(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_vectorized_matches_scalar(self):
        rng = np.random.default_rng(3)
        query = rng.normal(size=8)
        matrix = np.vstack([rng.normal(size=8), np.zeros(8), rng.normal(size=8)])

        sims = cosine_similarities(query, matrix)

        assert sims[1] == 0.0
        for row, sim in zip(matrix, sims):
            assert sim == pytest.approx(cosine_similarity(query, row))


class TestFactorScorer:
    """Test cases for per-factor scores."""

    def setup_method(self):
        """Set up test fixtures."""
        self.scorer = FactorScorer(recency_half_life_days=90.0, stock_reference=100)

    def test_semantic_rescaling(self):
        assert self.scorer.semantic(-1.0) == 0.0
        assert self.scorer.semantic(0.0) == 0.5
        assert self.scorer.semantic(1.0) == 1.0
        assert self.scorer.semantic(0.9, zero_norm=True) == 0.0

    def test_rating(self):
        assert self.scorer.rating(make_product(1, "a", rating=5.0)) == 1.0
        assert self.scorer.rating(make_product(1, "a", rating=4.0)) == pytest.approx(0.8)
        assert self.scorer.rating(make_product(1, "a", rating=None)) == 0.0

    def test_price_is_inverse_min_max(self):
        products = [make_product(i, "p", price=price) for i, price in enumerate([10.0, 20.0, 30.0, None])]
        assert self.scorer.prices(products) == pytest.approx([1.0, 0.5, 0.0, 0.5])

    def test_single_candidate_price_is_one(self):
        assert self.scorer.prices([make_product(1, "p", price=42.0)]) == [1.0]

    def test_equal_prices_do_not_divide_by_zero(self):
        products = [make_product(i, "p", price=9.99) for i in range(3)]
        assert self.scorer.prices(products) == [1.0, 1.0, 1.0]

    def test_stock(self):
        assert self.scorer.stock(make_product(1, "p", stock_quantity=100)) == 1.0
        assert self.scorer.stock(make_product(1, "p", stock_quantity=500)) == 1.0
        assert self.scorer.stock(make_product(1, "p", availability=Availability.LOW_STOCK,
                                              stock_quantity=50)) == pytest.approx(0.25)
        assert self.scorer.stock(make_product(1, "p", availability=Availability.OUT_OF_STOCK)) == 0.0
        assert self.scorer.stock(make_product(1, "p", stock_quantity=None)) == 1.0
        assert self.scorer.stock(make_product(1, "p", stock_quantity=-5)) == 0.0

    def test_recency_decay(self):
        assert self.scorer.recency(make_product(1, "p", updated_at=NOW), NOW) == 1.0
        half = make_product(1, "p", updated_at=NOW - timedelta(days=90))
        assert self.scorer.recency(half, NOW) == pytest.approx(0.5)

    def test_recency_future_and_very_old(self):
        future = make_product(1, "p", updated_at=NOW + timedelta(days=3))
        ancient = make_product(2, "p", updated_at=NOW - timedelta(days=365 * 200))
        assert self.scorer.recency(future, NOW) == 1.0
        assert self.scorer.recency(ancient, NOW) == pytest.approx(1e-6)

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            FactorScorer(recency_half_life_days=0)
        with pytest.raises(ValueError):
            FactorScorer(stock_reference=0)


class TestValidateWeights:
    """Test cases for weight validation."""

    def test_default_weights_are_valid(self):
        assert validate_weights(RankingWeights()) == []

    def test_negative_weight_raises(self):
        with pytest.raises(ConfigurationError):
            validate_weights(RankingWeights(beta=-0.1))

    def test_non_unit_sum_warns(self):
        warnings = validate_weights(RankingWeights(alpha=1.0, beta=1.0))
        assert len(warnings) == 1
        assert "sum to" in warnings[0]


class TestRankingEngine:
    """Test cases for RankingEngine.rank."""

    def test_empty_candidates(self, engine):
        query = EMBEDDER.embed_sync("anything")
        assert engine.rank(query, [], RankingWeights(), now=NOW) == []

    def test_scores_are_bounded_and_contributions_sum(self, engine):
        candidates = [
            make_candidate(make_product(1, "Red Leather Wallet", price=20.0)),
            make_candidate(make_product(2, "Garden Hose", price=35.0, rating=2.5,
                                        availability=Availability.LOW_STOCK, stock_quantity=10)),
        ]
        results = engine.rank(EMBEDDER.embed_sync("leather wallet"), candidates, RankingWeights(), now=NOW)

        for result in results:
            for factor in RankingFactor:
                assert 0.0 <= result.factors.get(factor) <= 1.0
            assert sum(result.contributions.values()) == pytest.approx(result.final_score)
            assert 0.0 <= result.final_score <= 1.0

    def test_identical_text_has_maximal_semantic_score(self, engine):
        candidates = [make_candidate(make_product(1, "Red Leather Wallet"))]
        results = engine.rank(EMBEDDER.embed_sync("red leather wallet"), candidates,
                              RankingWeights(), now=NOW)
        assert results[0].factors.semantic == pytest.approx(1.0)

    def test_single_candidate_price_factor(self, engine):
        candidates = [make_candidate(make_product(1, "Mug", price=7.5))]
        results = engine.rank(EMBEDDER.embed_sync("mug"), candidates, RankingWeights(), now=NOW)
        assert results[0].factors.price == 1.0

    def test_semantic_match_outranks_slightly_better_rating(self, engine):
        """Test that a strong text match beats a marginally higher rating."""
        wallet = make_product(1, "Red Leather Wallet", rating=4.8, price=19.99)
        sneakers = make_product(2, "Blue Sneakers", rating=4.9, price=18.99)
        candidates = [make_candidate(sneakers), make_candidate(wallet)]

        results = engine.rank(EMBEDDER.embed_sync("red leather wallet"), candidates,
                              RankingWeights(), now=NOW)

        assert [r.product.id for r in results] == [1, 2]
        assert results[0].factors.semantic > results[1].factors.semantic

    def test_equal_scores_order_by_product_id(self, engine):
        """Test that ties are broken by ascending product id, not input order."""
        candidates = [
            make_candidate(make_product(7, "Steel Water Bottle")),
            make_candidate(make_product(3, "Steel Water Bottle")),
            make_candidate(make_product(5, "Steel Water Bottle")),
        ]
        results = engine.rank(EMBEDDER.embed_sync("water bottle"), candidates, RankingWeights(), now=NOW)

        assert [r.product.id for r in results] == [3, 5, 7]
        assert [r.position for r in results] == [1, 2, 3]

    def test_deterministic(self, engine):
        candidates = [make_candidate(make_product(i, title, rating=rating, price=price))
                      for i, (title, rating, price) in enumerate([
                          ("Leather Belt", 4.1, 25.0), ("Leather Wallet", 3.9, 15.0),
                          ("Canvas Wallet", 4.5, 9.0), ("Wallet Chain", 4.5, 9.0),
                      ], start=1)]
        query = EMBEDDER.embed_sync("leather wallet")

        first = engine.rank(query, candidates, RankingWeights(), now=NOW)
        second = engine.rank(query, list(reversed(candidates)), RankingWeights(), now=NOW)

        assert [r.product.id for r in first] == [r.product.id for r in second]
        assert [r.final_score for r in first] == pytest.approx([r.final_score for r in second])

    @pytest.mark.parametrize("scale", [1e-4, 1e-3, 0.5, 2.0, 10.0])
    def test_uniform_weight_scaling_preserves_order(self, engine, scale):
        candidates = [make_candidate(make_product(i, title, rating=rating, price=price,
                                                  updated_at=NOW - timedelta(days=age)))
                      for i, (title, rating, price, age) in enumerate([
                          ("Trail Running Shoe", 4.0, 80.0, 10), ("Road Running Shoe", 4.6, 95.0, 200),
                          ("Running Socks", 4.9, 8.0, 30), ("Hiking Boot", 3.5, 120.0, 5),
                      ], start=1)]
        query = EMBEDDER.embed_sync("running shoe")
        base = RankingWeights()
        scaled = RankingWeights(alpha=base.alpha * scale, beta=base.beta * scale, gamma=base.gamma * scale,
                                delta=base.delta * scale, epsilon=base.epsilon * scale)

        expected = [r.product.id for r in engine.rank(query, candidates, base, now=NOW)]
        actual = [r.product.id for r in engine.rank(query, candidates, scaled, now=NOW)]

        assert actual == expected

    @pytest.mark.parametrize("scale", [1e-4, 1e-3, 1e-2])
    def test_small_weights_keep_close_scores_apart(self, engine, scale):
        """Test that a small rating gap still decides the order under tiny weights."""
        candidates = [
            make_candidate(make_product(1, "Leather Wallet", rating=4.80)),
            make_candidate(make_product(2, "Leather Wallet", rating=4.81)),
        ]
        query = EMBEDDER.embed_sync("leather wallet")
        base = RankingWeights()
        scaled = RankingWeights(alpha=base.alpha * scale, beta=base.beta * scale, gamma=base.gamma * scale,
                                delta=base.delta * scale, epsilon=base.epsilon * scale)

        expected = [r.product.id for r in engine.rank(query, candidates, base, now=NOW)]
        actual = [r.product.id for r in engine.rank(query, candidates, scaled, now=NOW)]

        assert expected == [2, 1]
        assert actual == expected

    def test_near_equal_scores_order_by_product_id(self, engine):
        """Test that scores a rounding step apart but nearly equal still tie."""
        factors = FactorScores(0.5, 0.5, 0.5, 0.5, 0.5)
        lower_id = ScoredResult(make_product(1, "Mug"), factors, {}, final_score=0.1234564999999)
        higher_id = ScoredResult(make_product(2, "Mug"), factors, {}, final_score=0.1234565000001)

        ordered = engine.order([higher_id, lower_id], RankingWeights())

        assert [r.product.id for r in ordered] == [1, 2]

    def test_order_separates_real_gaps(self, engine):
        factors = FactorScores(0.5, 0.5, 0.5, 0.5, 0.5)
        results = [ScoredResult(make_product(pid, "Mug"), factors, {}, final_score=score)
                   for pid, score in ((1, 0.40), (2, 0.70), (3, 0.70), (4, 0.55))]

        ordered = engine.order(results, RankingWeights())

        assert [r.product.id for r in ordered] == [2, 3, 4, 1]

    def test_precomputed_matrix_gives_same_ranking(self, engine):
        """Test that passing the stacked embedding matrix does not change results."""
        candidates = [make_candidate(make_product(i, title, rating=rating))
                      for i, (title, rating) in enumerate([
                          ("Leather Belt", 4.1), ("Leather Wallet", 3.9), ("Canvas Wallet", 4.5),
                      ], start=1)]
        matrix = np.vstack([c.embedding.vector for c in candidates])
        query = EMBEDDER.embed_sync("leather wallet")

        plain = engine.rank(query, candidates, RankingWeights(), now=NOW)
        stacked = engine.rank(query, candidates, RankingWeights(), now=NOW, matrix=matrix)

        assert [r.product.id for r in stacked] == [r.product.id for r in plain]
        assert [r.final_score for r in stacked] == pytest.approx([r.final_score for r in plain])

    def test_mismatched_matrix_is_ignored(self, engine):
        candidates = [make_candidate(make_product(1, "Mug")), make_candidate(make_product(2, "Cup"))]

        results = engine.rank(EMBEDDER.embed_sync("mug"), candidates, RankingWeights(), now=NOW,
                              matrix=np.ones((1, 384)))

        assert [r.product.id for r in results] == [1, 2]

    def test_top_k_truncation(self, engine):
        candidates = [make_candidate(make_product(i, f"Mug model {i}")) for i in range(1, 16)]
        results = engine.rank(EMBEDDER.embed_sync("mug"), candidates, RankingWeights(), top_k=5, now=NOW)

        assert len(results) == 5
        assert [r.position for r in results] == [1, 2, 3, 4, 5]

    def test_default_top_k(self, engine):
        candidates = [make_candidate(make_product(i, f"Mug model {i}")) for i in range(1, 16)]
        assert len(engine.rank(EMBEDDER.embed_sync("mug"), candidates, RankingWeights(), now=NOW)) == 10

    def test_dimension_mismatch_is_excluded(self, engine):
        good = make_candidate(make_product(1, "Mug"))
        bad_product = make_product(2, "Mug")
        bad = Candidate(bad_product, Embedding(2, np.ones(10), "other", "Mug"))

        results = engine.rank(EMBEDDER.embed_sync("mug"), [good, bad], RankingWeights(), now=NOW)

        assert [r.product.id for r in results] == [1]
        assert engine.error_handler.get_error_statistics()["total_errors"] == 1

    def test_zero_query_vector_scores_zero_semantic(self, engine):
        candidates = [make_candidate(make_product(1, "Mug"))]
        results = engine.rank(EMBEDDER.zero_vector(), candidates, RankingWeights(), now=NOW)
        assert results[0].factors.semantic == 0.0

    def test_negative_weights_rejected(self, engine):
        candidates = [make_candidate(make_product(1, "Mug"))]
        with pytest.raises(ConfigurationError):
            engine.rank(EMBEDDER.embed_sync("mug"), candidates, RankingWeights(gamma=-0.2), now=NOW)

    def test_semantic_only_weights(self, engine):
        """Test that with only alpha set, order follows similarity."""
        candidates = [
            make_candidate(make_product(1, "Garden Hose", rating=5.0)),
            make_candidate(make_product(2, "Leather Wallet", rating=1.0)),
        ]
        weights = RankingWeights(alpha=1.0, beta=0.0, gamma=0.0, delta=0.0, epsilon=0.0)

        results = engine.rank(EMBEDDER.embed_sync("leather wallet"), candidates, weights, now=NOW)

        assert results[0].product.id == 2
        assert results[0].final_score == pytest.approx(results[0].factors.semantic)
