"""Tests for core data models."""

import pytest
from datetime import datetime

from product_ranker.models.core import (
    Availability, InteractionType, MetricType, Product, RankingFactor, RankingWeights,
    SearchFilters, UploadJobStatus, parse_features
)


class TestProductFromRow:
    """Test cases for coercing raw catalog rows."""

    def test_camel_case_row(self):
        """Test that ingestion rows with camelCase keys are parsed."""
        row = {
            "id": "12",
            "title": "  Red Leather Wallet ",
            "price": "19.99",
            "originalPrice": 29.99,
            "rating": "4.8",
            "reviewCount": "120",
            "availability": "low_stock",
            "stockQuantity": "7",
            "features": '["RFID blocking", "Genuine leather"]',
            "isFeatured": "true",
            "updatedAt": "2024-05-01T10:00:00",
        }

        product = Product.from_row(row)

        assert product.id == 12
        assert product.title == "Red Leather Wallet"
        assert product.price == pytest.approx(19.99)
        assert product.original_price == pytest.approx(29.99)
        assert product.review_count == 120
        assert product.availability == Availability.LOW_STOCK
        assert product.stock_quantity == 7
        assert product.features == ["RFID blocking", "Genuine leather"]
        assert product.is_featured is True
        assert product.updated_at == datetime(2024, 5, 1, 10, 0, 0)
        assert product.currency == "GBP"

    def test_snake_case_row_with_missing_optionals(self):
        """Test that absent optional fields stay unset."""
        product = Product.from_row({"product_id": 3, "title": "Plain Mug"})

        assert product.id == 3
        assert product.price is None
        assert product.rating is None
        assert product.stock_quantity is None
        assert product.features == []
        assert product.availability == Availability.IN_STOCK

    def test_row_without_title_is_rejected(self):
        """Test that rows missing required fields raise ValueError."""
        with pytest.raises(ValueError):
            Product.from_row({"id": 1, "title": ""})

    def test_unknown_availability_is_rejected(self):
        """Test that an unknown availability value raises ValueError."""
        with pytest.raises(ValueError):
            Product.from_row({"id": 1, "title": "Mug", "availability": "sold"})


class TestParseFeatures:
    """Test cases for feature list parsing."""

    def test_comma_separated(self):
        assert parse_features("waterproof, lightweight ,, breathable") == [
            "waterproof", "lightweight", "breathable"
        ]

    def test_json_array(self):
        assert parse_features('["a", "b"]') == ["a", "b"]

    def test_list_and_empty(self):
        assert parse_features(["x", " ", "y"]) == ["x", "y"]
        assert parse_features(None) == []
        assert parse_features("") == []


class TestRankingWeights:
    """Test cases for ranking weights."""

    def test_defaults_sum_to_one(self):
        weights = RankingWeights()
        assert weights.total == pytest.approx(1.0)
        assert weights.weight_for(RankingFactor.SEMANTIC) == 0.5
        assert weights.weight_for(RankingFactor.RECENCY) == 0.05

    def test_as_dict_covers_every_factor(self):
        weights = RankingWeights(alpha=0.1, beta=0.2, gamma=0.3, delta=0.25, epsilon=0.15)
        values = weights.as_dict()
        assert set(values) == set(RankingFactor)
        assert values[RankingFactor.PRICE] == 0.3

    def test_from_row_accepts_camel_case_and_ignores_unknown_keys(self):
        """Test that raw weights rows are coerced like product rows."""
        weights = RankingWeights.from_row({
            "name": "tuned", "alpha": "0.6", "beta": 0.1, "isActive": "true",
            "version": "3", "createdAt": "2025-01-01", "notes": "from experiment",
        })

        assert weights.name == "tuned"
        assert weights.alpha == 0.6
        assert weights.beta == 0.1
        assert weights.gamma == 0.15
        assert weights.is_active
        assert weights.version == 3
        assert weights.id is None

    def test_from_row_defaults_to_inactive(self):
        assert not RankingWeights.from_row({"name": "draft"}).is_active
        assert RankingWeights.from_row({"alpha": 0}).alpha == 0.0

    @pytest.mark.parametrize("row", [
        {"alpha": "heavy"},
        {"beta": [0.2]},
        ["alpha", 0.5],
    ])
    def test_from_row_rejects_unparseable_values(self, row):
        with pytest.raises(ValueError):
            RankingWeights.from_row(row)


class TestSearchFilters:
    """Test cases for candidate filters."""

    def setup_method(self):
        """Set up test fixtures."""
        self.product = Product(
            id=1, title="Trail Shoe", category="Footwear", brand="Acme",
            price=50.0, rating=4.2, availability=Availability.IN_STOCK, is_featured=True,
        )

    def test_empty_filters_match(self):
        assert SearchFilters().matches(self.product)

    def test_category_is_case_insensitive(self):
        assert SearchFilters(category="footwear").matches(self.product)
        assert not SearchFilters(category="Bags").matches(self.product)

    def test_price_bounds(self):
        assert SearchFilters(min_price=40, max_price=60).matches(self.product)
        assert not SearchFilters(max_price=45).matches(self.product)

    def test_price_filter_excludes_unpriced_products(self):
        unpriced = Product(id=2, title="Mystery Box")
        assert not SearchFilters(min_price=1).matches(unpriced)

    def test_availability_rating_and_featured(self):
        assert SearchFilters(availability=[Availability.IN_STOCK], min_rating=4.0,
                             featured_only=True).matches(self.product)
        assert not SearchFilters(availability=[Availability.OUT_OF_STOCK]).matches(self.product)
        assert not SearchFilters(min_rating=4.5).matches(self.product)

    def test_dict_round_trip_keeps_only_set_filters(self):
        filters = SearchFilters.from_dict({"brand": "Acme", "availability": "in_stock", "max_price": "80"})

        assert filters.availability == [Availability.IN_STOCK]
        assert filters.max_price == 80.0
        assert filters.to_dict() == {"brand": "Acme", "max_price": 80.0, "availability": ["in_stock"]}


class TestEnums:
    """Test cases for closed enum variants."""

    def test_relevance_signals(self):
        assert not InteractionType.VIEW.is_relevance_signal
        for interaction_type in (InteractionType.CLICK, InteractionType.SEARCH_CLICK,
                                 InteractionType.ADD_TO_CART, InteractionType.PURCHASE):
            assert interaction_type.is_relevance_signal

    def test_upload_job_transitions(self):
        assert UploadJobStatus.PENDING.can_transition_to(UploadJobStatus.PROCESSING)
        assert UploadJobStatus.PROCESSING.can_transition_to(UploadJobStatus.EMBEDDING)
        assert UploadJobStatus.EMBEDDING.can_transition_to(UploadJobStatus.COMPLETED)
        assert UploadJobStatus.EMBEDDING.can_transition_to(UploadJobStatus.FAILED)
        assert not UploadJobStatus.PENDING.can_transition_to(UploadJobStatus.COMPLETED)
        assert not UploadJobStatus.COMPLETED.can_transition_to(UploadJobStatus.FAILED)
        assert UploadJobStatus.COMPLETED.is_terminal
        assert UploadJobStatus.FAILED.is_terminal
        assert not UploadJobStatus.PENDING.is_terminal

    def test_metric_type_values(self):
        assert MetricType.NDCG_AT_10.value == "ndcg@10"
        assert MetricType("mrr") is MetricType.MRR
