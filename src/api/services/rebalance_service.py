import logging
from collections import OrderedDict
from datetime import datetime, timezone
from threading import Lock
from typing import Dict, Optional

from fastapi import HTTPException, status

from src.api.http_status import HTTP_422_UNPROCESSABLE
from src.api.request_models import (
    GroupRebalanceRequest,
    RebalanceSummaryRequest,
    RebalanceSummaryResponse,
    SimulateRebalanceRequest,
)
from src.api.routers.rebalance_config import (
    derive_wash_sales_enabled,
    idempotency_cache_max_size,
    idempotency_replay_enabled,
)
from src.core.common.canonical import hash_canonical_payload
from src.core.errors import RebalanceConfigurationError, RebalanceGroupNotFoundError
from src.core.groups import RebalanceGroupService, apply_derived_restrictions
from src.core.metrics import summarize_trades
from src.core.models import RebalanceResult
from src.core.rebalance import prepare_group, run_rebalance

logger = logging.getLogger(__name__)

REBALANCE_IDEMPOTENCY_CACHE: "OrderedDict[str, Dict[str, object]]" = OrderedDict()
_CACHE_LOCK = Lock()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def to_http_exception(exc: RebalanceConfigurationError) -> HTTPException:
    if isinstance(exc, RebalanceGroupNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.code)
    return HTTPException(status_code=HTTP_422_UNPROCESSABLE, detail=f"{exc.code}: {exc}")


def _replay_cached(idempotency_key: str, request_hash: str) -> Optional[RebalanceResult]:
    with _CACHE_LOCK:
        existing = REBALANCE_IDEMPOTENCY_CACHE.get(idempotency_key)
        if existing is None:
            return None
        if existing["request_hash"] != request_hash:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="IDEMPOTENCY_KEY_CONFLICT: request hash mismatch",
            )
        REBALANCE_IDEMPOTENCY_CACHE.move_to_end(idempotency_key)
        return RebalanceResult.model_validate(existing["response"])


def _store_cached(idempotency_key: str, request_hash: str, result: RebalanceResult) -> None:
    max_size = idempotency_cache_max_size()
    with _CACHE_LOCK:
        REBALANCE_IDEMPOTENCY_CACHE[idempotency_key] = {
            "request_hash": request_hash,
            "response": result.model_dump(mode="json"),
        }
        REBALANCE_IDEMPOTENCY_CACHE.move_to_end(idempotency_key)
        while len(REBALANCE_IDEMPOTENCY_CACHE) > max_size:
            REBALANCE_IDEMPOTENCY_CACHE.popitem(last=False)


def _log_result(result: RebalanceResult) -> None:
    logger.info(
        "Rebalance completed. RunID=%s Group=%s Method=%s Status=%s Trades=%s",
        result.rebalance_run_id,
        result.group_id,
        result.method.value,
        result.status,
        len(result.trades),
    )
    if result.diagnostics.blocked_sleeves:
        logger.warning(
            "Sleeves blocked. RunID=%s Sleeves=%s",
            result.rebalance_run_id,
            [entry.sleeve_id for entry in result.diagnostics.blocked_sleeves],
        )


def simulate_rebalance(
    *,
    payload: SimulateRebalanceRequest,
    idempotency_key: str,
    correlation_id: Optional[str],
) -> RebalanceResult:
    logger.info(
        "Simulating rebalance. CID=%s Idempotency=%s Group=%s",
        correlation_id,
        idempotency_key,
        payload.snapshot.group_id,
    )
    request_hash = hash_canonical_payload(payload.model_dump(mode="json"))
    replay_enabled = idempotency_replay_enabled()
    if replay_enabled:
        cached = _replay_cached(idempotency_key, request_hash)
        if cached is not None:
            logger.info("Idempotent replay. Idempotency=%s", idempotency_key)
            return cached

    as_of = payload.as_of or _now()
    snapshot = payload.snapshot
    if derive_wash_sales_enabled():
        snapshot = apply_derived_restrictions(snapshot, as_of=as_of)
    try:
        result = run_rebalance(
            snapshot,
            payload.request,
            as_of=as_of,
            request_hash=request_hash,
            idempotency_key=idempotency_key,
        )
    except RebalanceConfigurationError as exc:
        logger.warning("Rebalance rejected. Group=%s Code=%s", snapshot.group_id, exc.code)
        raise to_http_exception(exc) from exc

    if replay_enabled:
        _store_cached(idempotency_key, request_hash, result)
    _log_result(result)
    return result


def simulate_group_rebalance(
    *,
    group_id: str,
    payload: GroupRebalanceRequest,
    service: RebalanceGroupService,
    idempotency_key: Optional[str],
    correlation_id: Optional[str],
) -> RebalanceResult:
    logger.info(
        "Rebalancing stored group. CID=%s Group=%s Method=%s",
        correlation_id,
        group_id,
        payload.method.value,
    )
    try:
        result = service.rebalance(
            group_id=group_id,
            request=payload.to_rebalance_request(group_id=group_id),
            as_of=payload.as_of or _now(),
            idempotency_key=idempotency_key,
        )
    except RebalanceConfigurationError as exc:
        logger.warning("Rebalance rejected. Group=%s Code=%s", group_id, exc.code)
        raise to_http_exception(exc) from exc
    _log_result(result)
    return result


def summarize_rebalance(*, payload: RebalanceSummaryRequest) -> RebalanceSummaryResponse:
    try:
        prepared = prepare_group(payload.snapshot, as_of=payload.as_of or _now())
    except RebalanceConfigurationError as exc:
        raise to_http_exception(exc) from exc
    return RebalanceSummaryResponse(
        group_id=payload.snapshot.group_id,
        summary=summarize_trades(payload.trades, prepared.sleeves, prepared.account_types),
    )
