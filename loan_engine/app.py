# loan_engine/app.py
"""
Main FastAPI application for the Loan Engine.
Provides the consistency engine API, health checks and request logging.
"""

import os
import time
import uuid

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .audit_routes import audit_router
from .database_config import get_database_info, get_engine
from .drift_routes import drift_router
from .engine_logging import LogContext, get_logger, sanitize_for_logging, setup_logging
from .errors import register_exception_handlers
from .golden_record_routes import golden_record_router
from .graph_routes import graph_router
from .workspace_routes import workspace_router

# Initialize logging
setup_logging()
logger = get_logger(__name__)


class LoanEngineApp:
    """Main application class for the Loan Engine."""

    def __init__(self):
        self.app = FastAPI(
            title="Loan Engine",
            description="Consistency engine for syndicated loan documents: dependency graph, "
                        "integrity scoring, commercial drift and golden record publishing",
            version=__version__,
        )
        self.setup_middleware()
        register_exception_handlers(self.app)
        self.setup_routes()

    def setup_middleware(self):
        """Configure middleware for the application."""
        origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        # Logging middleware
        @self.app.middleware("http")
        async def log_requests(request, call_next):
            start_time = time.time()
            trace_id = request.headers.get("x-request-id") or uuid.uuid4().hex

            with LogContext(
                trace_id=trace_id,
                request_path=str(request.url.path),
                request_method=request.method,
                request_actor_id=request.headers.get("x-actor-id"),
            ):
                logger.info(f"Request started: {request.method} {request.url.path}")
                logger.debug("Request headers", extra={'headers': sanitize_for_logging(dict(request.headers))})

                response = await call_next(request)

                duration_ms = (time.time() - start_time) * 1000
                logger.info(
                    f"Request completed: {request.method} {request.url.path}",
                    extra={
                        'status_code': response.status_code,
                        'duration_ms': duration_ms
                    }
                )
                response.headers['X-Request-Id'] = trace_id
                response.headers['Cache-Control'] = 'no-store'

            return response

    def setup_routes(self):
        """Configure application routes."""
        self.app.include_router(workspace_router)
        self.app.include_router(graph_router)
        self.app.include_router(drift_router)
        self.app.include_router(golden_record_router)
        self.app.include_router(audit_router)

        @self.app.get("/healthz")
        def health_check():
            """Health check endpoint."""
            health_data = {
                "status": "ok",
                "environment": os.getenv('APP_ENV', 'dev'),
                "timestamp": time.time(),
                "version": __version__,
                "database": get_database_info(get_engine()),
            }

            logger.info("Health check requested")
            return JSONResponse(content=health_data)


# Create the application instance
loan_engine_app = LoanEngineApp()
app = loan_engine_app.app


def main():
    """Run the API with uvicorn."""
    env = os.getenv('APP_ENV', 'dev')
    port = int(os.getenv('PORT', 8000))
    host = os.getenv('HOST', '0.0.0.0')

    logger.info(f"Starting Loan Engine in {env} environment on {host}:{port}")

    uvicorn.run(
        "loan_engine.app:app",
        host=host,
        port=port,
        reload=(env == 'dev'),
        log_config=None  # We handle logging ourselves
    )


if __name__ == "__main__":
    main()
