"""Candidate retrieval over the stored catalog and its embeddings."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..adapters.base import CatalogStore
from ..models.core import Candidate, Embedding, Product, SearchFilters
from ..utils.error_handling import (
    DataIntegrityError, ErrorContext, ErrorHandler, get_error_handler
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateSet:
    """Eligible candidates plus bookkeeping of what was left out and why.

    ``matrix`` holds the candidates' embedding rows in candidate order when
    they come from a snapshot; it is None for sets read straight from the store.
    """
    candidates: Tuple[Candidate, ...]
    missing_embedding: Tuple[int, ...] = ()
    dimension_mismatch: Tuple[int, ...] = ()
    matrix: Optional[np.ndarray] = field(default=None, compare=False, repr=False)

    @property
    def excluded_count(self) -> int:
        return len(self.missing_embedding) + len(self.dimension_mismatch)


@dataclass(frozen=True)
class IndexSnapshot:
    """Immutable materialization of the whole catalog for one embedding dimension.

    The embedding matrix is stacked once when the snapshot is built and is
    read-only; filtered reads slice its rows instead of restacking vectors.
    """
    candidate_set: CandidateSet
    dimension: int
    matrix: np.ndarray = field(compare=False, repr=False)
    built_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def build(cls, candidate_set: CandidateSet, dimension: int) -> "IndexSnapshot":
        vectors = [c.embedding.vector for c in candidate_set.candidates]
        matrix = np.vstack(vectors) if vectors else np.zeros((0, dimension), dtype=np.float64)
        matrix.setflags(write=False)
        return cls(candidate_set=candidate_set, dimension=dimension, matrix=matrix)

    def subset(self, filters: Optional[SearchFilters] = None) -> CandidateSet:
        candidates = self.candidate_set.candidates
        if filters is None:
            return CandidateSet(candidates=candidates, matrix=self.matrix)
        rows = [i for i, c in enumerate(candidates) if filters.matches(c.product)]
        return CandidateSet(candidates=tuple(candidates[i] for i in rows), matrix=self.matrix[rows])

    def __len__(self) -> int:
        return len(self.candidate_set.candidates)


class ProductIndex:
    """Builds candidate sets of (product, embedding) pairs for a search.

    Products without an embedding, or whose embedding does not have the
    index dimension, are excluded and reported; they never reach scoring.
    When snapshot caching is on, reads are served from an immutable snapshot
    that ``refresh_snapshot`` rebuilds and publishes with one reference swap.
    """

    def __init__(self, store: CatalogStore, dimension: int, use_snapshot: bool = False,
                 error_handler: Optional[ErrorHandler] = None):
        """Initialize the product index.

        Args:
            store: Store providing products and embeddings
            dimension: Embedding length every eligible candidate must have
            use_snapshot: Serve reads from the published snapshot when one exists
            error_handler: Optional error handler instance
        """
        self.store = store
        self.dimension = dimension
        self.use_snapshot = use_snapshot
        self.error_handler = error_handler or get_error_handler()
        self._snapshot: Optional[IndexSnapshot] = None

    @property
    def snapshot(self) -> Optional[IndexSnapshot]:
        return self._snapshot

    async def candidates(self, filters: Optional[SearchFilters] = None) -> List[Candidate]:
        """Return eligible candidates matching the filters, in stable store order."""
        candidate_set = await self.materialize(filters)
        return list(candidate_set.candidates)

    async def materialize(self, filters: Optional[SearchFilters] = None) -> CandidateSet:
        """Return the candidate set for the filters along with exclusion details."""
        snapshot = self._snapshot
        if self.use_snapshot and snapshot is not None:
            return snapshot.subset(filters)

        products = await self.store.get_products(filters)
        return await self._build_candidate_set(products)

    async def refresh_snapshot(self) -> IndexSnapshot:
        """Rebuild the full-catalog snapshot and publish it atomically."""
        products = await self.store.get_products(None)
        candidate_set = await self._build_candidate_set(products)
        snapshot = IndexSnapshot.build(candidate_set, self.dimension)
        self._snapshot = snapshot
        logger.info(f"Published index snapshot with {len(snapshot)} candidates "
                    f"({candidate_set.excluded_count} excluded)")
        return snapshot

    async def _build_candidate_set(self, products: Sequence[Product]) -> CandidateSet:
        eligible: List[Candidate] = []
        missing: List[int] = []
        mismatched: List[int] = []

        for product in products:
            embedding = await self.store.get_embedding(product.id)
            if embedding is None:
                missing.append(product.id)
                logger.debug(f"Product {product.id} has no embedding; excluded from candidates")
                continue

            try:
                self._check_embedding(embedding)
            except DataIntegrityError as e:
                self.error_handler.handle_error(e, ErrorContext(
                    component="ProductIndex",
                    operation="materialize",
                    product_id=product.id,
                    additional_data={"expected_dimension": self.dimension,
                                     "actual_dimension": embedding.dimension},
                ))
                mismatched.append(product.id)
                continue

            eligible.append(Candidate(product=product, embedding=embedding))

        if missing or mismatched:
            logger.info(f"Candidate retrieval excluded {len(missing)} products without embeddings "
                        f"and {len(mismatched)} with invalid embeddings")

        return CandidateSet(
            candidates=tuple(eligible),
            missing_embedding=tuple(missing),
            dimension_mismatch=tuple(mismatched),
        )

    def _check_embedding(self, embedding: Embedding) -> None:
        vector = embedding.vector
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise DataIntegrityError(
                f"Embedding for product {embedding.product_id} has dimension {embedding.dimension}, "
                f"index expects {self.dimension}",
                product_id=embedding.product_id,
                expected_dimension=self.dimension,
                actual_dimension=embedding.dimension,
            )
        if not np.all(np.isfinite(vector)):
            raise DataIntegrityError(
                f"Embedding for product {embedding.product_id} contains non-finite values",
                product_id=embedding.product_id,
            )
