from typing import Annotated, Optional

from fastapi import APIRouter, Header, status

from src.api.request_models import (
    RebalanceSummaryRequest,
    RebalanceSummaryResponse,
    SimulateRebalanceRequest,
)
from src.api.services import rebalance_service as service
from src.api.simulation_examples import (
    CONFIGURATION_ERROR_EXAMPLE,
    SIMULATE_409_EXAMPLE,
    SIMULATE_NO_ACTION_EXAMPLE,
    SIMULATE_PARTIAL_EXAMPLE,
    SIMULATE_READY_EXAMPLE,
)
from src.core.models import RebalanceResult

router = APIRouter()


@router.post(
    "/rebalance/simulate",
    response_model=RebalanceResult,
    status_code=status.HTTP_200_OK,
    tags=["Rebalance Simulation"],
    summary="Simulate a Group Rebalance",
    description=(
        "Runs one deterministic rebalance for an inline group snapshot.\n\n"
        "Required header: `Idempotency-Key`.\n"
        "Optional header: `X-Correlation-Id`.\n\n"
        "Domain outcomes are returned in the response body status field."
    ),
    responses={
        200: {
            "description": "Rebalance completed with domain status in payload.",
            "content": {
                "application/json": {
                    "examples": {
                        "ready": SIMULATE_READY_EXAMPLE,
                        "partial": SIMULATE_PARTIAL_EXAMPLE,
                        "no_action": SIMULATE_NO_ACTION_EXAMPLE,
                    }
                }
            },
        },
        409: {
            "description": "Idempotency key reused with different canonical request hash.",
            "content": {"application/json": {"examples": {"conflict": SIMULATE_409_EXAMPLE}}},
        },
        422: {
            "description": "Invalid payload, missing headers, or unrebalanceable group.",
            "content": {
                "application/json": {"examples": {"configuration": CONFIGURATION_ERROR_EXAMPLE}}
            },
        },
    },
)
def simulate_rebalance(
    payload: SimulateRebalanceRequest,
    idempotency_key: Annotated[
        str,
        Header(
            alias="Idempotency-Key",
            description="Required idempotency token for request deduplication at client boundary.",
            examples=["demo-idem-001"],
        ),
    ],
    correlation_id: Annotated[
        Optional[str],
        Header(
            alias="X-Correlation-Id",
            description="Optional trace/correlation identifier propagated to logs.",
            examples=["corr-1234-abcd"],
        ),
    ] = None,
) -> RebalanceResult:
    return service.simulate_rebalance(
        payload=payload,
        idempotency_key=idempotency_key,
        correlation_id=correlation_id,
    )


@router.post(
    "/rebalance/summary",
    response_model=RebalanceSummaryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Rebalance Simulation"],
    summary="Summarize a Trade List",
    description="Recomputes summary cards for an edited trade list against a group snapshot.",
)
def summarize_rebalance(payload: RebalanceSummaryRequest) -> RebalanceSummaryResponse:
    return service.summarize_rebalance(payload=payload)
