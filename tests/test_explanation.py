"""Tests for the explanation generator."""

import pytest

from product_ranker.models.core import FactorScores, Product, RankingFactor, RankingWeights, ScoredResult
from product_ranker.services.explanation import ExplanationGenerator, tokenize


def scored(product: Product, factors: FactorScores, weights: RankingWeights = RankingWeights(),
           position: int = 1) -> ScoredResult:
    contributions = {f: weights.weight_for(f) * factors.get(f) for f in RankingFactor}
    return ScoredResult(product=product, factors=factors, contributions=contributions,
                        final_score=sum(contributions.values()), position=position)


class TestTokenize:
    """Test cases for tokenization."""

    def test_lowercase_alphanumeric(self):
        assert tokenize("Red-Leather WALLET, 2x!") == ["red", "leather", "wallet", "2x"]

    def test_empty(self):
        assert tokenize("") == []
        assert tokenize(None) == []

    def test_accented_and_cyrillic_words(self):
        """Test that letters outside ASCII stay inside their tokens."""
        assert tokenize("Café Crème Mug") == ["café", "crème", "mug"]
        assert tokenize("Кожаный КОШЕЛЕК") == ["кожаный", "кошелек"]

    def test_decomposed_accents_match_composed(self):
        assert tokenize("Cafe\u0301") == tokenize("Café")

    def test_underscore_splits_tokens(self):
        assert tokenize("snake_case") == ["snake", "case"]


class TestExplanationGenerator:
    """Test cases for ExplanationGenerator."""

    def setup_method(self):
        """Set up test fixtures."""
        self.generator = ExplanationGenerator()
        self.product = Product(
            id=1,
            title="Leather Wallet",
            description="Slim wallet in genuine red leather",
            features=["RFID blocking", "Red stitching"],
        )

    def test_matched_terms_follow_product_text_order(self):
        """Test that matches are ordered by first appearance in the product text."""
        terms = self.generator.matched_terms("red leather wallet", self.product)
        assert terms == ["leather", "wallet", "red"]

    def test_matched_terms_include_features(self):
        terms = self.generator.matched_terms("rfid wallet", self.product)
        assert terms == ["wallet", "rfid"]

    def test_no_matches(self):
        assert self.generator.matched_terms("garden hose", self.product) == []

    def test_matched_terms_outside_ascii(self):
        """Test that accented and Cyrillic query words match product text."""
        mug = Product(id=2, title="Café Crème Mug")
        wallet = Product(id=3, title="Wallet", description="Кожаный кошелек")

        assert self.generator.matched_terms("café crème", mug) == ["café", "crème"]
        assert self.generator.matched_terms("кошелек", wallet) == ["кошелек"]

    def test_explanation_names_top_factors(self):
        """Test that the explanation names the largest weighted contributions."""
        result = scored(self.product, FactorScores(semantic=0.95, rating=0.9, price=0.2,
                                                   stock=1.0, recency=1.0))

        terms, text = self.generator.explain(result, "red leather wallet")

        assert terms == ["leather", "wallet", "red"]
        assert text.startswith("Matches 'leather', 'wallet', 'red'.")
        assert "semantic match 0.95" in text
        assert "customer rating 0.90" in text
        assert "recency" not in text

    def test_trivial_second_factor_is_omitted(self):
        weights = RankingWeights(alpha=0.9, beta=0.025, gamma=0.025, delta=0.025, epsilon=0.025)
        result = scored(self.product, FactorScores(semantic=1.0, rating=1.0, price=1.0,
                                                   stock=1.0, recency=1.0), weights)

        _, text = self.generator.explain(result, "wallet")

        assert "semantic match" in text
        assert " and " not in text

    def test_fallback_names_dominant_non_semantic_factor(self):
        """Test the explanation when no query term appears in the product text."""
        result = scored(self.product, FactorScores(semantic=0.5, rating=0.2, price=1.0,
                                                   stock=0.3, recency=0.1))

        terms, text = self.generator.explain(result, "garden hose")

        assert terms == []
        assert "No query terms found" in text
        assert "price competitiveness" in text
        assert "semantic match" not in text

    def test_many_terms_are_abbreviated(self):
        generator = ExplanationGenerator(max_terms_shown=2)
        result = scored(self.product, FactorScores(0.9, 0.9, 0.9, 0.9, 0.9))

        _, text = generator.explain(result, "red leather wallet")

        assert "(+1 more)" in text

    def test_annotate_preserves_order_and_scores(self):
        """Test that annotation copies scores and never reorders results."""
        other = Product(id=2, title="Garden Hose")
        results = [
            scored(self.product, FactorScores(0.9, 0.8, 0.5, 1.0, 1.0), position=1),
            scored(other, FactorScores(0.5, 1.0, 1.0, 1.0, 1.0), position=2),
        ]
        before = [(r.product.id, r.position, r.final_score) for r in results]

        rows = self.generator.annotate(results, "leather wallet")

        assert [(r.product.id, r.position, r.final_score) for r in results] == before
        assert [row.product_id for row in rows] == [1, 2]
        assert [row.position for row in rows] == [1, 2]
        assert rows[0].final_score == pytest.approx(results[0].final_score)
        assert rows[0].semantic_score == 0.9
        assert rows[1].rating_score == 1.0
        assert rows[0].matched_terms == ["leather", "wallet"]
        assert rows[1].matched_terms == []
        assert not rows[0].was_clicked
