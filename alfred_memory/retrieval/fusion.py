"""
Reciprocal Rank Fusion
----------------------
Combines several ranked id lists into one score map. Each list contributes
``weight / (k + rank + 1)`` for every item it ranks (zero-based rank), so an
item found by only one retriever still gets that retriever's share.
"""

from typing import Dict, Hashable, Sequence, Tuple

# RRF constant (standard value from literature)
RRF_K = 60


def reciprocal_rank_fusion(
    ranked_lists: Sequence[Tuple[Sequence[Hashable], float]],
    k: int = RRF_K,
) -> Dict[Hashable, float]:
    """
    Fuse ``(ids, weight)`` pairs into ``{id: fused_score}``.

    The returned dict preserves first-seen order across the lists, which
    callers use as the tie-break when sorting by fused score.
    """
    if k < 0:
        raise ValueError(f"RRF k must be non-negative, got {k}")
    fused: Dict[Hashable, float] = {}
    for ids, weight in ranked_lists:
        for rank, item_id in enumerate(ids):
            fused[item_id] = fused.get(item_id, 0.0) + weight / (k + rank + 1)
    return fused
