# loan_engine/__init__.py
"""
Loan Engine - consistency engine for syndicated-loan workspaces

This package rebuilds the clause/variable dependency graph, scores document
integrity, tracks commercial drift against approved baselines, and gates the
Golden Record publish action.

Key modules:
- app: Main FastAPI application
- engine_logging: Structured JSON logging utilities
- graph: Graph builder and integrity scorer
- drift: Drift detection, severity policy and resolution
- golden_record: Publish gate, export and connector fan-out

Environment isolation is maintained through configuration, not code separation.
"""

__version__ = "0.1.0"
