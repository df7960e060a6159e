# loan_engine/graph/integrity.py
"""
Integrity Scorer

score = 100 for an empty graph, otherwise
100 - (drift nodes / total) * 30 - (warning nodes / total) * 20,
rounded half-up and floored at 0.
"""

import math
from typing import Iterable, Protocol

DRIFT_WEIGHT = 30
WARNING_WEIGHT = 20


class FlaggedNode(Protocol):
    has_drift: bool
    has_warning: bool


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def score_from_counts(total_nodes: int, drift_nodes: int, warning_nodes: int) -> int:
    """Integrity score from flag counts; always within [0, 100]"""
    if total_nodes <= 0:
        return 100

    drift_penalty = (drift_nodes / total_nodes) * DRIFT_WEIGHT
    warning_penalty = (warning_nodes / total_nodes) * WARNING_WEIGHT
    return min(100, max(0, round_half_up(100 - drift_penalty - warning_penalty)))


def compute_integrity_score(nodes: Iterable[FlaggedNode]) -> int:
    """Integrity score over any iterable of objects carrying the two flags"""
    total = drift = warning = 0
    for node in nodes:
        total += 1
        if node.has_drift:
            drift += 1
        if node.has_warning:
            warning += 1
    return score_from_counts(total, drift, warning)
