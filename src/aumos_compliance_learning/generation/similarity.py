"""Cross-framework control similarity.

TokenOverlapSimilarityScorer is the default SimilarityScorer. Score is a
weighted blend capped at 1.0:

- 0.2 when categories are equal
- 0.2 when one domain contains the other
- 0.3 × title token overlap, |A ∩ B| / max(|A|, |B|)
- 0.3 × description token overlap over the first 50 tokens
"""

import re
from typing import Any

MAPPING_THRESHOLD = 0.6
EQUIVALENT_THRESHOLD = 0.9
PARTIAL_THRESHOLD = 0.75

_CATEGORY_WEIGHT = 0.2
_DOMAIN_WEIGHT = 0.2
_TITLE_WEIGHT = 0.3
_DESCRIPTION_WEIGHT = 0.3
_DESCRIPTION_TOKENS = 50

_TOKEN_SPLIT = re.compile(r"\W+")


def tokenize(text: str | None, limit: int | None = None) -> set[str]:
    """Lower-cased word tokens, optionally from the first ``limit`` words only."""
    tokens = [token for token in _TOKEN_SPLIT.split((text or "").lower()) if token]
    if limit is not None:
        tokens = tokens[:limit]
    return set(tokens)


def token_overlap(left: set[str], right: set[str]) -> float:
    """|left ∩ right| / max(|left|, |right|), 0 when both are empty."""
    denominator = max(len(left), len(right))
    if denominator == 0:
        return 0.0
    return len(left & right) / denominator


def _domains_overlap(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    left, right = left.lower(), right.lower()
    return left in right or right in left


class TokenOverlapSimilarityScorer:
    """Keyword overlap similarity between two controls."""

    def score(self, candidate: Any, existing: Any) -> float:
        """Similarity in [0, 1].

        Args:
            candidate: Control with category, domain, title and description.
            existing: Control with the same attributes.

        Returns:
            Weighted similarity, capped at 1.0.
        """
        similarity = 0.0
        if candidate.category == existing.category:
            similarity += _CATEGORY_WEIGHT
        if _domains_overlap(candidate.domain, existing.domain):
            similarity += _DOMAIN_WEIGHT
        similarity += token_overlap(tokenize(candidate.title), tokenize(existing.title)) * _TITLE_WEIGHT
        similarity += (
            token_overlap(
                tokenize(candidate.description, _DESCRIPTION_TOKENS),
                tokenize(existing.description, _DESCRIPTION_TOKENS),
            )
            * _DESCRIPTION_WEIGHT
        )
        return min(similarity, 1.0)


def mapping_type_for(similarity: float) -> str:
    """Bucket a similarity score into equivalent, partial or related."""
    if similarity >= EQUIVALENT_THRESHOLD:
        return "equivalent"
    if similarity >= PARTIAL_THRESHOLD:
        return "partial"
    return "related"
