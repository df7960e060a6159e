# loan_engine/drift/severity.py
"""
Severity policies for newly detected drift.

The fixed policy is the default. The percent-change policy grades numeric
financial and covenant changes by their relative size.
"""

import re
from abc import ABC, abstractmethod
from typing import Optional

from ..config import EngineConfig, get_engine_config
from ..engine_logging import get_logger
from ..models import ClauseType, DriftSeverity

logger = get_logger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9.\-]")


def parse_number(value: Optional[str]) -> Optional[float]:
    """Numeric reading of a term value such as '$250,000,000' or '3.50x'"""
    if value is None:
        return None
    cleaned = _NON_NUMERIC.sub("", value)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


class SeverityPolicy(ABC):
    """Decides the severity of a drift item when the caller supplies none"""

    name = "base"
    # Re-grade an open item whenever its current value moves
    value_sensitive = False

    @abstractmethod
    def classify(self, clause_type: ClauseType, baseline_value: str, current_value: str) -> DriftSeverity:
        raise NotImplementedError


class FixedSeverityPolicy(SeverityPolicy):
    """Every drift item gets the same configured severity"""

    name = "fixed"

    def __init__(self, severity: DriftSeverity = DriftSeverity.MEDIUM):
        self.severity = severity

    def classify(self, clause_type: ClauseType, baseline_value: str, current_value: str) -> DriftSeverity:
        return self.severity


class PercentChangeSeverityPolicy(SeverityPolicy):
    """
    Grade by relative change of numeric financial/covenant terms

    - financial/covenant: >= high% HIGH, >= medium% MEDIUM, else LOW
    - definition: MEDIUM
    - anything else, or non-numeric values: LOW
    """

    name = "percent_change"
    value_sensitive = True

    def __init__(self, high_percent: float = 10.0, medium_percent: float = 5.0):
        self.high_percent = high_percent
        self.medium_percent = medium_percent

    def classify(self, clause_type: ClauseType, baseline_value: str, current_value: str) -> DriftSeverity:
        baseline = parse_number(baseline_value)
        current = parse_number(current_value)

        if baseline is not None and current is not None and baseline != 0:
            if clause_type in (ClauseType.FINANCIAL, ClauseType.COVENANT):
                percent_change = abs((current - baseline) / baseline) * 100
                if percent_change >= self.high_percent:
                    return DriftSeverity.HIGH
                if percent_change >= self.medium_percent:
                    return DriftSeverity.MEDIUM
                return DriftSeverity.LOW

        if clause_type == ClauseType.DEFINITION:
            return DriftSeverity.MEDIUM
        return DriftSeverity.LOW


def get_severity_policy(config: Optional[EngineConfig] = None) -> SeverityPolicy:
    """Severity policy selected by ENGINE_SEVERITY_POLICY"""
    config = config or get_engine_config()
    if config.severity_policy == PercentChangeSeverityPolicy.name:
        return PercentChangeSeverityPolicy(config.high_change_percent, config.medium_change_percent)
    return FixedSeverityPolicy(DriftSeverity(config.default_severity))
