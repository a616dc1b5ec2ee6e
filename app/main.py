"""
CI Matrix API
Submit a variant matrix, poll its report, cancel it while in flight.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.config import settings
from app.routers import matrix

_log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    _log.info(
        "Matrix runs: project=%s script=%s workspace=%s reports=%s concurrency=%d",
        settings.MATRIX_PROJECT_DIR, settings.MATRIX_SCRIPT,
        settings.MATRIX_WORKSPACE, settings.MATRIX_REPORT_DIR,
        settings.MATRIX_CONCURRENCY,
    )
    if settings.COVERAGE_ENABLED and not settings.CODECOV_TOKEN:
        _log.warning("Coverage enabled without CODECOV_TOKEN; uploads rely on CI detection")
    yield
    in_flight = matrix.active_run_ids()
    if in_flight:
        _log.warning("Shutting down, cancelling runs %s", ", ".join(in_flight))
        matrix.cancel_all()


app = FastAPI(
    title=settings.API_TITLE,
    description="Run a verification script once per toolchain/flag variant; "
                "upload kcov coverage for the designated variant",
    version=settings.API_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def declaration_error_handler(request: Request, exc: RequestValidationError):
    """Malformed matrix declarations: 422 with the pydantic error list."""
    _log.warning("Rejected %s %s: %s", request.method, request.url.path, exc.errors()[:3])
    return JSONResponse(status_code=422, content={"detail": exc.errors()})


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "ci-matrix-api",
        "version": settings.API_VERSION,
        "coverage_enabled": settings.COVERAGE_ENABLED,
        "active_runs": len(matrix.active_run_ids()),
    }


@app.get("/")
async def root():
    return {
        "submit": "POST /matrix/runs",
        "list": "GET /matrix/runs",
        "report": "GET /matrix/runs/{run_id}",
        "cancel": "POST /matrix/runs/{run_id}/cancel",
    }


app.include_router(matrix.router, prefix="/matrix", tags=["matrix"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
