# loan_engine/config.py
"""
Engine Configuration - environment-driven settings for the consistency engine
"""

import os
from typing import Any, Dict, Optional

from .engine_logging import get_logger

logger = get_logger(__name__)

SEVERITY_POLICIES = ("fixed", "percent_change")
SEVERITY_LEVELS = ("HIGH", "MEDIUM", "LOW")


class EngineConfig:
    """Consistency engine configuration management"""

    def __init__(self, env: Optional[str] = None):
        """
        Initialize engine configuration for a specific environment.

        Args:
            env: Environment name (dev, test, prod); APP_ENV when omitted
        """
        self.env = env or os.getenv("APP_ENV", "dev")
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration defaults with environment variable overrides"""
        config = {
            "graph": {
                "clause_preview_chars": 100,
                "default_edge_weight": 1,
            },
            "drift": {
                "severity_policy": "fixed",
                "default_severity": "MEDIUM",
                "high_change_percent": 10.0,
                "medium_change_percent": 5.0,
            },
            "publish": {
                "ready_integrity_threshold": 90,
            },
        }

        preview = os.getenv("ENGINE_CLAUSE_PREVIEW_CHARS")
        if preview:
            try:
                config["graph"]["clause_preview_chars"] = max(1, int(preview))
            except ValueError:
                logger.warning(f"Invalid ENGINE_CLAUSE_PREVIEW_CHARS '{preview}', keeping default")

        policy = os.getenv("ENGINE_SEVERITY_POLICY", "").strip().lower()
        if policy:
            if policy in SEVERITY_POLICIES:
                config["drift"]["severity_policy"] = policy
            else:
                logger.warning(f"Unknown ENGINE_SEVERITY_POLICY '{policy}', using 'fixed'")

        default_severity = os.getenv("ENGINE_DEFAULT_SEVERITY", "").strip().upper()
        if default_severity:
            if default_severity in SEVERITY_LEVELS:
                config["drift"]["default_severity"] = default_severity
            else:
                logger.warning(f"Unknown ENGINE_DEFAULT_SEVERITY '{default_severity}', using MEDIUM")

        return config

    @property
    def clause_preview_chars(self) -> int:
        return self._config["graph"]["clause_preview_chars"]

    @property
    def default_edge_weight(self) -> int:
        return self._config["graph"]["default_edge_weight"]

    @property
    def severity_policy(self) -> str:
        return self._config["drift"]["severity_policy"]

    @property
    def default_severity(self) -> str:
        return self._config["drift"]["default_severity"]

    @property
    def high_change_percent(self) -> float:
        return self._config["drift"]["high_change_percent"]

    @property
    def medium_change_percent(self) -> float:
        return self._config["drift"]["medium_change_percent"]

    @property
    def ready_integrity_threshold(self) -> int:
        return self._config["publish"]["ready_integrity_threshold"]

    def to_dict(self) -> Dict[str, Any]:
        """Return a copy of the configuration for status reporting"""
        return {section: dict(values) for section, values in self._config.items()}


_config: Optional[EngineConfig] = None


def get_engine_config() -> EngineConfig:
    """Get or create the global engine configuration"""
    global _config
    if _config is None:
        _config = EngineConfig()
    return _config


def reset_engine_config() -> None:
    """Drop the cached configuration so the next access re-reads the environment"""
    global _config
    _config = None
