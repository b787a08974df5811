"""Weighted vote tallying.

A ballot counts for its province's ``vote_weight``, not one-province-one-vote.
Everything here is pure; callers pass in the current weight table.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping

from council.models.province import Province
from council.models.proposal import VoteCounts


def weight_table(provinces: Iterable[Province]) -> dict[str, float]:
    """Map province name → vote weight."""
    return {p.name: p.vote_weight for p in provinces}


def total_weight(weights: Mapping[str, float]) -> float:
    """Weight of the whole electorate, whether or not it voted."""
    return sum(weights.values())


def tally_votes(votes: Mapping[str, str], weights: Mapping[str, float]) -> VoteCounts:
    """Sum each province's weight into the bucket of its recorded choice.

    Provinces missing from ``votes`` contribute nothing. Names missing from
    ``weights`` count with weight 0.
    """
    counts = VoteCounts()
    for province_name, choice in votes.items():
        weight = weights.get(province_name, 0.0)
        if choice == "aye":
            counts.aye += weight
        elif choice == "nay":
            counts.nay += weight
        elif choice == "present":
            counts.present += weight
    return counts


def majority_passes(counts: VoteCounts) -> bool:
    """Strictly greater-than: ties fail."""
    return counts.aye > counts.nay


def meets_supermajority(counts: VoteCounts, electorate_weight: float, threshold: float) -> bool:
    """True when aye weight reaches ``threshold`` of the total electorate weight.

    The base is every province's weight, not just the weight that was cast.
    """
    if electorate_weight <= 0:
        return False
    bar = threshold * electorate_weight
    # Float weights: an aye sum landing exactly on the bar must pass.
    return counts.aye >= bar or math.isclose(counts.aye, bar, abs_tol=1e-9)
