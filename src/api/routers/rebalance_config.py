import os

from src.core.groups import RebalanceGroupService
from src.core.wash_sale import WASH_SALE_WINDOW_DAYS
from src.infrastructure.groups import EnvJsonRebalanceGroupRepository

DEFAULT_IDEMPOTENCY_CACHE_SIZE = 1000


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed >= 1 else default


def idempotency_replay_enabled() -> bool:
    return env_flag("REBALANCE_IDEMPOTENCY_REPLAY_ENABLED", True)


def idempotency_cache_max_size() -> int:
    return env_int("REBALANCE_IDEMPOTENCY_CACHE_MAX_SIZE", DEFAULT_IDEMPOTENCY_CACHE_SIZE)


def derive_wash_sales_enabled() -> bool:
    return env_flag("REBALANCE_DERIVE_WASH_SALES_FROM_TRANSACTIONS", True)


def build_rebalance_group_service() -> RebalanceGroupService:
    repository = EnvJsonRebalanceGroupRepository(
        snapshots_json=os.getenv("REBALANCE_GROUP_SNAPSHOTS_JSON")
    )
    return RebalanceGroupService(
        repository=repository,
        derive_wash_sales=derive_wash_sales_enabled(),
        wash_sale_window_days=env_int("REBALANCE_WASH_SALE_WINDOW_DAYS", WASH_SALE_WINDOW_DAYS),
    )
