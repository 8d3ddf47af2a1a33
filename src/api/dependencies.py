from fastapi import Request

from src.api.routers.rebalance_config import build_rebalance_group_service
from src.core.groups import RebalanceGroupService


def get_rebalance_group_service(request: Request) -> RebalanceGroupService:
    """Service handle kept on app state; built lazily when the lifespan did not run."""
    service = getattr(request.app.state, "rebalance_group_service", None)
    if service is None:
        service = build_rebalance_group_service()
        request.app.state.rebalance_group_service = service
    return service
