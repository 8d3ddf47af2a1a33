"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.http_status import HTTP_422_UNPROCESSABLE, problem_details
from src.api.observability import setup_observability
from src.api.routers.rebalance import router as rebalance_router
from src.api.routers.rebalance_config import build_rebalance_group_service
from src.api.routers.rebalance_groups import router as rebalance_groups_router
from src.core.errors import RebalanceConfigurationError


@asynccontextmanager
async def _app_lifespan(app: FastAPI):
    app.state.rebalance_group_service = build_rebalance_group_service()
    logger.info(
        "Rebalance group service ready. Groups=%s",
        len(app.state.rebalance_group_service.list_group_ids()),
    )
    yield


app = FastAPI(
    title="Tax-Aware Rebalance API",
    version="0.1.0",
    description=(
        "Deterministic tax-loss-harvesting rebalance service.\n\n"
        "Domain outcomes for valid payloads are returned in response body status: "
        "`READY`, `PARTIAL`, or `NO_ACTION`."
    ),
    openapi_tags=[
        {
            "name": "Rebalance Simulation",
            "description": "Inline snapshot rebalance and trade summary endpoints.",
        },
        {
            "name": "Rebalance Groups",
            "description": "Rebalance runs against stored group snapshots.",
        },
        {
            "name": "Health",
            "description": "Liveness and readiness probes.",
        },
    ],
    lifespan=_app_lifespan,
)

setup_observability(app)
logger = logging.getLogger(__name__)

app.include_router(rebalance_router)
app.include_router(rebalance_groups_router)

health_router = APIRouter(tags=["Health"])


@health_router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@health_router.get("/health/live")
def health_live() -> dict[str, str]:
    return {"status": "live"}


@health_router.get("/health/ready")
def health_ready() -> dict[str, str]:
    return {"status": "ready"}


app.include_router(health_router)
app.include_router(health_router, prefix="/api/v1")


@app.exception_handler(RebalanceConfigurationError)
async def configuration_error_to_unprocessable(
    request: Request, exc: RebalanceConfigurationError
) -> JSONResponse:
    logger.warning("Rebalance configuration error. Code=%s Path=%s", exc.code, request.url.path)
    return JSONResponse(
        status_code=HTTP_422_UNPROCESSABLE,
        content={"detail": f"{exc.code}: {exc}"},
    )


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content=problem_details(
            status_code=500,
            title="Internal Server Error",
            detail="An unexpected error occurred.",
            instance=str(request.url.path),
        ),
    )
