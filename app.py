"""Compatibility bridge exposing the FastAPI app instance for tests and tooling."""
from loan_engine.app import app, LoanEngineApp

__all__ = ["app", "LoanEngineApp"]
