"""FastAPI application setup."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dealflow.config import settings
from dealflow.errors import (
    DealflowError,
    InputError,
    PersistenceError,
    RecordNotFoundError,
)
from .routes import router

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Deal-flow Matching Core",
    description="Merge extracted buyer and deal data, deduplicate buyers, and rank buyer-deal fit",
    version="0.1.0",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error_body(exc: DealflowError) -> dict:
    return {"detail": exc.message, "context": exc.context, "error_type": type(exc).__name__}


@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    return JSONResponse(status_code=400, content=_error_body(exc))


@app.exception_handler(RecordNotFoundError)
async def not_found_handler(request: Request, exc: RecordNotFoundError):
    return JSONResponse(status_code=404, content=_error_body(exc))


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Persistence failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Persistence error"})


@app.exception_handler(DealflowError)
async def dealflow_error_handler(request: Request, exc: DealflowError):
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": exc.message})


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": "0.1.0"}


# Include API routes
app.include_router(router, prefix="/api")
