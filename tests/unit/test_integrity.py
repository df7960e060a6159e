# tests/unit/test_integrity.py
"""
Unit tests for the integrity scorer.
"""

from types import SimpleNamespace

import pytest

from loan_engine.graph.integrity import compute_integrity_score, round_half_up, score_from_counts


def make_nodes(total: int, drift: int = 0, warning: int = 0):
    return [
        SimpleNamespace(has_drift=i < drift, has_warning=i < warning)
        for i in range(total)
    ]


class TestIntegrityScore:
    """Score formula, rounding and range"""

    def test_empty_graph_scores_100(self):
        assert compute_integrity_score([]) == 100
        assert score_from_counts(0, 0, 0) == 100

    def test_clean_graph_scores_100(self):
        assert compute_integrity_score(make_nodes(12)) == 100

    def test_drift_and_warning_penalties(self):
        # 100 - 2/10*30 - 1/10*20
        assert compute_integrity_score(make_nodes(10, drift=2, warning=1)) == 92

    def test_node_with_both_flags_counts_twice(self):
        nodes = [SimpleNamespace(has_drift=True, has_warning=True), SimpleNamespace(has_drift=False, has_warning=False)]
        # 100 - 15 - 10
        assert compute_integrity_score(nodes) == 75

    def test_all_flagged_scores_50(self):
        assert compute_integrity_score(make_nodes(4, drift=4, warning=4)) == 50

    def test_rounds_half_up(self):
        # 100 - 1/4*30 = 92.5
        assert score_from_counts(4, 1, 0) == 93
        # 100 - 3/8*20 = 92.5
        assert score_from_counts(8, 0, 3) == 93

    def test_round_half_up_helper(self):
        assert round_half_up(86.5) == 87
        assert round_half_up(87.49) == 87
        assert round_half_up(0.5) == 1

    @pytest.mark.parametrize("total", [1, 3, 7, 10, 25])
    def test_score_always_in_range(self, total):
        for drift in range(total + 1):
            for warning in range(total + 1):
                score = score_from_counts(total, drift, warning)
                assert 0 <= score <= 100

    def test_deterministic(self):
        nodes = make_nodes(9, drift=3, warning=2)
        assert compute_integrity_score(nodes) == compute_integrity_score(list(nodes))
