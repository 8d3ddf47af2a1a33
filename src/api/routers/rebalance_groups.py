from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, Path, status

from src.api.dependencies import get_rebalance_group_service
from src.api.request_models import GroupRebalanceRequest, RebalanceGroupListResponse
from src.api.services import rebalance_service as service
from src.api.simulation_examples import (
    CONFIGURATION_ERROR_EXAMPLE,
    GROUP_NOT_FOUND_EXAMPLE,
    SIMULATE_PARTIAL_EXAMPLE,
    SIMULATE_READY_EXAMPLE,
)
from src.core.groups import RebalanceGroupService
from src.core.models import RebalanceResult

router = APIRouter()


@router.get(
    "/rebalance/groups",
    response_model=RebalanceGroupListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Rebalance Groups"],
    summary="List Rebalance Groups",
)
def list_rebalance_groups(
    group_service: Annotated[RebalanceGroupService, Depends(get_rebalance_group_service)],
) -> RebalanceGroupListResponse:
    return RebalanceGroupListResponse(group_ids=group_service.list_group_ids())


@router.post(
    "/rebalance/groups/{group_id}/simulate",
    response_model=RebalanceResult,
    status_code=status.HTTP_200_OK,
    tags=["Rebalance Groups"],
    summary="Rebalance a Stored Group",
    description=(
        "Loads the stored group snapshot and runs one rebalance. Runs for the same "
        "group are serialized."
    ),
    responses={
        200: {
            "description": "Rebalance completed with domain status in payload.",
            "content": {
                "application/json": {
                    "examples": {
                        "ready": SIMULATE_READY_EXAMPLE,
                        "partial": SIMULATE_PARTIAL_EXAMPLE,
                    }
                }
            },
        },
        404: {
            "description": "Group not found.",
            "content": {"application/json": {"examples": {"not_found": GROUP_NOT_FOUND_EXAMPLE}}},
        },
        422: {
            "description": "Invalid payload or unrebalanceable group.",
            "content": {
                "application/json": {"examples": {"configuration": CONFIGURATION_ERROR_EXAMPLE}}
            },
        },
    },
)
def simulate_group_rebalance(
    payload: GroupRebalanceRequest,
    group_id: Annotated[str, Path(description="Rebalance group identifier.")],
    group_service: Annotated[RebalanceGroupService, Depends(get_rebalance_group_service)],
    idempotency_key: Annotated[
        Optional[str],
        Header(alias="Idempotency-Key", description="Optional idempotency token for lineage."),
    ] = None,
    correlation_id: Annotated[
        Optional[str],
        Header(
            alias="X-Correlation-Id",
            description="Optional trace/correlation identifier propagated to logs.",
        ),
    ] = None,
) -> RebalanceResult:
    return service.simulate_group_rebalance(
        group_id=group_id,
        payload=payload,
        service=group_service,
        idempotency_key=idempotency_key,
        correlation_id=correlation_id,
    )
