"""
FastAPI backend for the adverse-event safety pipeline.

Exposes case upload, execution, inspection and reset over JSON. Clients
poll GET /context/{case_id} and read `status` for progress.
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from api.routes import cases, health
from src.pipeline.errors import AlreadyRunning, NotFound, PipelineError, ValidationFailed
from src.pipeline.registry import CaseRegistry, build_registry
from src.utils.logging import setup_logging

load_dotenv()

logger = logging.getLogger(__name__)


# Registry errors map to client errors; anything else is a server fault
ERROR_STATUS = {
    NotFound: 404,
    AlreadyRunning: 409,
    ValidationFailed: 400,
}


async def pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": exc.message},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": ValidationFailed.code, "detail": jsonable_encoder(exc.errors())},
    )


def create_app(registry: Optional[CaseRegistry] = None) -> FastAPI:
    """
    Build the application.

    Args:
        registry: Pre-built registry (tests); built from the environment if omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan - startup and shutdown."""
        if registry is None:
            setup_logging()
            app.state.registry = build_registry()
        else:
            app.state.registry = registry
        logger.info("Adverse Event Safety Pipeline API starting")
        yield
        logger.info("API shutting down")

    app = FastAPI(
        title="Adverse Event Safety Pipeline API",
        description="Three-stage traceable safety assessment of adverse-event reports",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS configuration for the polling UI
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PipelineError, pipeline_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(health.router, tags=["Health"])
    app.include_router(cases.router, tags=["Cases"])

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
