"""
Ranking helpers for merging semantic and keyword result sets.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

SEMANTIC_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3


@dataclass(frozen=True)
class RankedBookmark:
    """A bookmark with its retrieval scores."""

    id: int
    url: str
    title: str | None
    description: str | None
    site_name: str | None
    image_url: str | None
    notes: str | None
    created_at: str | None
    semantic_score: float = 0.0
    keyword_score: float = 0.0
    matched_by: str = "keyword"

    @classmethod
    def from_row(cls, row: Any, **scores: Any) -> RankedBookmark:
        return cls(
            id=row["id"],
            url=row["url"],
            title=row["title"],
            description=row["description"],
            site_name=row["site_name"],
            image_url=row["image_url"],
            notes=row["notes"],
            created_at=row["created_at"],
            **scores,
        )

    @property
    def score(self) -> float:
        return SEMANTIC_WEIGHT * self.semantic_score + KEYWORD_WEIGHT * self.keyword_score

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["score"] = round(self.score, 6)
        return d


def similarity_from_distance(distance: float | None) -> float:
    """Map cosine distance (0..2) to a similarity in 0..1."""
    if distance is None:
        return 0.0
    return max(0.0, min(1.0, 1.0 - distance))


def relevance_from_bm25(bm25: float | None) -> float:
    """Squash an FTS5 bm25 value (lower is better) into 0..1."""
    if bm25 is None:
        return 0.0
    r = max(0.0, -bm25)
    return r / (1.0 + r)


def merge_ranked(
    semantic: list[RankedBookmark],
    keyword: list[RankedBookmark],
    *,
    limit: int,
) -> list[RankedBookmark]:
    """Merge both result sets by bookmark id and sort by combined score."""
    merged: dict[int, RankedBookmark] = {b.id: b for b in semantic}
    for b in keyword:
        hit = merged.get(b.id)
        if hit is None:
            merged[b.id] = b
        else:
            merged[b.id] = RankedBookmark(
                **{
                    **asdict(hit),
                    "keyword_score": b.keyword_score,
                    "matched_by": "semantic+keyword",
                }
            )

    ordered = sorted(
        merged.values(),
        key=lambda b: (-b.score, -b.semantic_score, -b.keyword_score, -b.id),
    )
    return ordered[: max(limit, 1)]
