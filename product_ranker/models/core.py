"""Core data models for the product ranker."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
import numpy as np


class Availability(Enum):
    """Stock availability of a product."""
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class InteractionType(Enum):
    """Kinds of session interaction events."""
    VIEW = "view"
    CLICK = "click"
    SEARCH_CLICK = "search_click"
    ADD_TO_CART = "add_to_cart"
    PURCHASE = "purchase"

    @property
    def is_relevance_signal(self) -> bool:
        """Whether this event marks the product as relevant to the query that led to it."""
        return _RELEVANCE_SIGNALS[self]


_RELEVANCE_SIGNALS = {
    InteractionType.VIEW: False,
    InteractionType.CLICK: True,
    InteractionType.SEARCH_CLICK: True,
    InteractionType.ADD_TO_CART: True,
    InteractionType.PURCHASE: True,
}


class MetricType(Enum):
    """Evaluation metric kinds."""
    NDCG_AT_10 = "ndcg@10"
    RECALL_AT_10 = "recall@10"
    PRECISION_AT_10 = "precision@10"
    MRR = "mrr"
    CUSTOM = "custom"


class UploadJobStatus(Enum):
    """States of a catalog upload job."""
    PENDING = "pending"
    PROCESSING = "processing"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return not UPLOAD_JOB_TRANSITIONS[self]

    def can_transition_to(self, target: "UploadJobStatus") -> bool:
        return target in UPLOAD_JOB_TRANSITIONS[self]


UPLOAD_JOB_TRANSITIONS = {
    UploadJobStatus.PENDING: frozenset({UploadJobStatus.PROCESSING, UploadJobStatus.FAILED}),
    UploadJobStatus.PROCESSING: frozenset({UploadJobStatus.EMBEDDING, UploadJobStatus.FAILED}),
    UploadJobStatus.EMBEDDING: frozenset({UploadJobStatus.COMPLETED, UploadJobStatus.FAILED}),
    UploadJobStatus.COMPLETED: frozenset(),
    UploadJobStatus.FAILED: frozenset(),
}


class RankingFactor(Enum):
    """The five signals combined into a final ranking score."""
    SEMANTIC = "semantic"
    RATING = "rating"
    PRICE = "price"
    STOCK = "stock"
    RECENCY = "recency"

    @property
    def label(self) -> str:
        return _FACTOR_LABELS[self]


_FACTOR_LABELS = {
    RankingFactor.SEMANTIC: "semantic match",
    RankingFactor.RATING: "customer rating",
    RankingFactor.PRICE: "price competitiveness",
    RankingFactor.STOCK: "stock availability",
    RankingFactor.RECENCY: "recency",
}


def _pick(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(float(value))


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "y")
    return bool(value)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def parse_features(value: Any) -> List[str]:
    """Parse a feature list given as a list, a JSON array string or a comma-separated string."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if str(item).strip()]
    text = str(value).strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, list):
        return [str(item).strip() for item in parsed if str(item).strip()]
    return [part.strip() for part in text.split(",") if part.strip()]


@dataclass
class Product:
    """A catalog product as owned by the external store."""
    id: int
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    currency: str = "GBP"
    rating: Optional[float] = None
    review_count: int = 0
    availability: Availability = Availability.IN_STOCK
    stock_quantity: Optional[int] = 100
    features: List[str] = field(default_factory=list)
    is_featured: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    asin: Optional[str] = None
    image_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Product":
        """Coerce a raw ingestion row (camelCase or snake_case keys) into a Product.

        Raises:
            ValueError: If the row has no id or title, or a field cannot be parsed
        """
        product_id = _pick(row, "id", "productId", "product_id")
        title = _pick(row, "title")
        if product_id is None or title is None:
            raise ValueError(f"Product row requires 'id' and 'title': {dict(row)}")

        availability = _pick(row, "availability")
        now = datetime.now()
        return cls(
            id=_to_int(product_id),
            title=str(title).strip(),
            description=_pick(row, "description"),
            category=_pick(row, "category"),
            subcategory=_pick(row, "subcategory"),
            brand=_pick(row, "brand"),
            price=_to_float(_pick(row, "price")),
            original_price=_to_float(_pick(row, "originalPrice", "original_price")),
            currency=_pick(row, "currency") or "GBP",
            rating=_to_float(_pick(row, "rating")),
            review_count=_to_int(_pick(row, "reviewCount", "review_count")) or 0,
            availability=Availability(availability) if availability else Availability.IN_STOCK,
            stock_quantity=_to_int(_pick(row, "stockQuantity", "stock_quantity")),
            features=parse_features(_pick(row, "features")),
            is_featured=_to_bool(_pick(row, "isFeatured", "is_featured")),
            created_at=_to_datetime(_pick(row, "createdAt", "created_at")) or now,
            updated_at=_to_datetime(_pick(row, "updatedAt", "updated_at")) or now,
            asin=_pick(row, "asin"),
            image_url=_pick(row, "imageUrl", "image_url"),
        )


@dataclass
class Embedding:
    """Vector representation of one product, unique on product_id."""
    product_id: int
    vector: np.ndarray
    model: str
    text_used: str
    updated_at: datetime = field(default_factory=datetime.now)

    @property
    def dimension(self) -> int:
        return int(np.size(self.vector))


@dataclass
class RankingWeights:
    """Named, versioned coefficients of the ranking formula.

    Score = alpha*semantic + beta*rating + gamma*price + delta*stock + epsilon*recency
    """
    name: str = "default"
    alpha: float = 0.5
    beta: float = 0.2
    gamma: float = 0.15
    delta: float = 0.1
    epsilon: float = 0.05
    is_active: bool = True
    version: int = 1
    id: Optional[int] = None

    def weight_for(self, factor: RankingFactor) -> float:
        return {
            RankingFactor.SEMANTIC: self.alpha,
            RankingFactor.RATING: self.beta,
            RankingFactor.PRICE: self.gamma,
            RankingFactor.STOCK: self.delta,
            RankingFactor.RECENCY: self.epsilon,
        }[factor]

    def as_dict(self) -> Dict[RankingFactor, float]:
        return {factor: self.weight_for(factor) for factor in RankingFactor}

    @property
    def total(self) -> float:
        return self.alpha + self.beta + self.gamma + self.delta + self.epsilon

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RankingWeights":
        """Coerce a raw weights row (camelCase or snake_case keys) into RankingWeights.

        Missing weights take their defaults and unknown keys are ignored.

        Raises:
            ValueError: If a weight, version or id cannot be parsed as a number
        """
        if not isinstance(row, Mapping):
            raise ValueError(f"Ranking weights row must be an object, got {type(row).__name__}")
        defaults = cls()
        try:
            values = {
                factor: _to_float(_pick(row, factor))
                for factor in ("alpha", "beta", "gamma", "delta", "epsilon")
            }
            version = _to_int(_pick(row, "version"))
            weights_id = _to_int(_pick(row, "id", "weightsId", "weights_id"))
        except TypeError as e:
            raise ValueError(f"Invalid ranking weights row {dict(row)}: {e}") from e

        is_active = _pick(row, "is_active", "isActive")
        return cls(
            name=str(_pick(row, "name") or defaults.name),
            is_active=_to_bool(is_active) if is_active is not None else False,
            version=version if version is not None else defaults.version,
            id=weights_id,
            **{k: v if v is not None else getattr(defaults, k) for k, v in values.items()},
        )


@dataclass
class SearchFilters:
    """Candidate pre-filters applied before scoring."""
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    availability: Optional[List[Availability]] = None
    min_rating: Optional[float] = None
    featured_only: bool = False

    def matches(self, product: Product) -> bool:
        """Check whether a product passes every filter that is set."""
        if self.category and not _same_text(product.category, self.category):
            return False
        if self.subcategory and not _same_text(product.subcategory, self.subcategory):
            return False
        if self.brand and not _same_text(product.brand, self.brand):
            return False
        if self.min_price is not None and (product.price is None or product.price < self.min_price):
            return False
        if self.max_price is not None and (product.price is None or product.price > self.max_price):
            return False
        if self.availability and product.availability not in self.availability:
            return False
        if self.min_rating is not None and (product.rating or 0.0) < self.min_rating:
            return False
        if self.featured_only and not product.is_featured:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Serialize only the filters that are set, for search logging."""
        data: Dict[str, Any] = {}
        for key in ("category", "subcategory", "brand", "min_price", "max_price", "min_rating"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.availability:
            data["availability"] = [a.value for a in self.availability]
        if self.featured_only:
            data["featured_only"] = True
        return data

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SearchFilters":
        if not data:
            return cls()
        availability = data.get("availability")
        if isinstance(availability, str):
            availability = [availability]
        return cls(
            category=data.get("category"),
            subcategory=data.get("subcategory"),
            brand=data.get("brand"),
            min_price=_to_float(data.get("min_price")),
            max_price=_to_float(data.get("max_price")),
            availability=[Availability(a) for a in availability] if availability else None,
            min_rating=_to_float(data.get("min_rating")),
            featured_only=_to_bool(data.get("featured_only", False)),
        )


def _same_text(value: Optional[str], expected: str) -> bool:
    return value is not None and value.casefold() == expected.casefold()


@dataclass(frozen=True)
class Candidate:
    """A product paired with its embedding, eligible for scoring."""
    product: Product
    embedding: Embedding


@dataclass
class FactorScores:
    """Per-factor scores of one candidate, each within [0, 1]."""
    semantic: float
    rating: float
    price: float
    stock: float
    recency: float

    def get(self, factor: RankingFactor) -> float:
        return getattr(self, factor.value)

    def as_dict(self) -> Dict[str, float]:
        return {factor.value: self.get(factor) for factor in RankingFactor}


@dataclass
class ScoredResult:
    """A candidate after scoring."""
    product: Product
    factors: FactorScores
    contributions: Dict[RankingFactor, float]
    final_score: float
    cosine_similarity: float = 0.0
    position: int = 0


@dataclass
class SearchLog:
    """One record per executed query; never mutated after creation."""
    session_id: str
    query: str
    result_count: int = 0
    response_time_ms: Optional[int] = None
    filters: Dict[str, Any] = field(default_factory=dict)
    query_embedding: Optional[List[float]] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None


@dataclass
class SearchResultExplanation:
    """Per (search log, product) explanation row; only was_clicked changes later."""
    search_log_id: int
    product_id: int
    position: int
    final_score: float
    semantic_score: float
    rating_score: float
    price_score: float
    stock_score: float
    recency_score: float
    matched_terms: List[str] = field(default_factory=list)
    explanation: str = ""
    was_clicked: bool = False
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None


@dataclass
class SessionInteraction:
    """Append-only client interaction event."""
    session_id: str
    product_id: int
    interaction_type: InteractionType
    search_query: Optional[str] = None
    position: Optional[int] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None


@dataclass
class EvaluationMetric:
    """Append-only snapshot of one evaluation metric."""
    metric_type: MetricType
    value: float
    query_count: int = 0
    notes: Optional[str] = None
    evaluated_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None


@dataclass
class CatalogUploadJob:
    """Progress record of a catalog upload handled by the ingestion collaborator."""
    filename: str
    status: UploadJobStatus = UploadJobStatus.PENDING
    total_rows: int = 0
    processed_rows: int = 0
    embedded_rows: int = 0
    failed_rows: int = 0
    error_message: Optional[str] = None
    uploaded_by: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None


@dataclass
class RankedProduct:
    """One entry of a search response."""
    product: Product
    position: int
    final_score: float
    factor_scores: Dict[str, float]
    matched_terms: List[str]
    explanation: str


@dataclass
class SearchResponse:
    """Ordered, annotated results of one search."""
    query: str
    results: List[RankedProduct]
    search_log_id: Optional[int]
    response_time_ms: int
    total_candidates: int
    weights_name: str
    warnings: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class RefreshReport:
    """Outcome of a catalog embedding refresh."""
    total: int = 0
    embedded: int = 0
    failed: int = 0
    failures: Dict[int, str] = field(default_factory=dict)
    model: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        return self.embedded / self.total if self.total else 1.0
