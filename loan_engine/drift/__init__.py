"""
Drift detection, severity classification and resolution.
"""

from .severity import (
    FixedSeverityPolicy,
    PercentChangeSeverityPolicy,
    SeverityPolicy,
    get_severity_policy,
)
from .detector import DriftDetector, count_unresolved_drift, unresolved_high_drift_count
from .resolver import approve_drift, override_baseline, revert_draft

__all__ = [
    "SeverityPolicy",
    "FixedSeverityPolicy",
    "PercentChangeSeverityPolicy",
    "get_severity_policy",
    "DriftDetector",
    "count_unresolved_drift",
    "unresolved_high_drift_count",
    "override_baseline",
    "revert_draft",
    "approve_drift",
]
