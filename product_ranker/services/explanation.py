"""Per-result explanations derived from already-computed factor scores."""

import logging
import re
import unicodedata
from typing import List, Optional, Sequence, Tuple

from ..models.core import Product, RankingFactor, ScoredResult, SearchResultExplanation


logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"[^\W_]+")

NON_SEMANTIC_FACTORS = (
    RankingFactor.RATING,
    RankingFactor.PRICE,
    RankingFactor.STOCK,
    RankingFactor.RECENCY,
)


def tokenize(text: Optional[str]) -> List[str]:
    """Split text into case-folded alphanumeric tokens, keeping order and duplicates.

    Letters from any script count, so accented and non-Latin words survive.
    """
    if not text:
        return []
    return _TOKEN_PATTERN.findall(unicodedata.normalize("NFC", text).casefold())


class ExplanationGenerator:
    """Builds matched terms and a readable justification for each ranked result.

    The generator only reads scores; it never changes a result's score or position.
    """

    def __init__(self, secondary_ratio: float = 0.25, max_terms_shown: int = 5):
        """Initialize the explanation generator.

        Args:
            secondary_ratio: A second factor is named when its contribution is at
                least this fraction of the largest contribution
            max_terms_shown: Maximum number of matched terms quoted in the text
        """
        self.secondary_ratio = secondary_ratio
        self.max_terms_shown = max_terms_shown

    def matched_terms(self, query: str, product: Product) -> List[str]:
        """Query tokens present in the product text, in order of appearance there."""
        query_tokens = set(tokenize(query))
        if not query_tokens:
            return []

        product_tokens = tokenize(product.title) + tokenize(product.description)
        for feature in product.features:
            product_tokens.extend(tokenize(feature))

        matched: List[str] = []
        seen = set()
        for token in product_tokens:
            if token in query_tokens and token not in seen:
                seen.add(token)
                matched.append(token)
        return matched

    def explain(self, result: ScoredResult, query: str) -> Tuple[List[str], str]:
        """Return the matched terms and explanation text for one result."""
        terms = self.matched_terms(query, result.product)

        if not terms:
            factor = self._dominant(result, NON_SEMANTIC_FACTORS)
            text = (f"No query terms found in the product text; ranked mainly on "
                    f"{self._describe(result, factor)}.")
            return terms, text

        leading = self._leading_factors(result)
        named = " and ".join(self._describe(result, factor) for factor in leading)
        shown = ", ".join(f"'{term}'" for term in terms[:self.max_terms_shown])
        if len(terms) > self.max_terms_shown:
            shown += f" (+{len(terms) - self.max_terms_shown} more)"
        text = f"Matches {shown}. Top factors: {named}."
        return terms, text

    def annotate(self, results: Sequence[ScoredResult], query: str) -> List[SearchResultExplanation]:
        """Build explanation rows for ranked results.

        ``search_log_id`` is left at 0; the store assigns it when the rows are
        written alongside their search log.
        """
        rows = []
        for result in results:
            terms, text = self.explain(result, query)
            rows.append(SearchResultExplanation(
                search_log_id=0,
                product_id=result.product.id,
                position=result.position,
                final_score=result.final_score,
                semantic_score=result.factors.semantic,
                rating_score=result.factors.rating,
                price_score=result.factors.price,
                stock_score=result.factors.stock,
                recency_score=result.factors.recency,
                matched_terms=terms,
                explanation=text,
            ))
        return rows

    def _leading_factors(self, result: ScoredResult) -> List[RankingFactor]:
        ordered = sorted(RankingFactor, key=lambda f: -result.contributions.get(f, 0.0))
        first, second = ordered[0], ordered[1]
        top = result.contributions.get(first, 0.0)
        runner_up = result.contributions.get(second, 0.0)
        if top > 0 and runner_up >= self.secondary_ratio * top:
            return [first, second]
        return [first]

    @staticmethod
    def _dominant(result: ScoredResult, factors: Sequence[RankingFactor]) -> RankingFactor:
        return max(factors, key=lambda f: result.contributions.get(f, 0.0))

    @staticmethod
    def _describe(result: ScoredResult, factor: RankingFactor) -> str:
        return (f"{factor.label} {result.factors.get(factor):.2f} "
                f"(contributes {result.contributions.get(factor, 0.0):.3f})")
