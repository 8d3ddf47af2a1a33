from datetime import datetime
from threading import Lock
from typing import Optional

from src.core.errors import RebalanceGroupNotFoundError
from src.core.groups.repository import RebalanceGroupRepository
from src.core.models import RebalanceGroupSnapshot, RebalanceRequest, RebalanceResult
from src.core.rebalance import request_fingerprint, run_rebalance
from src.core.wash_sale import (
    WASH_SALE_WINDOW_DAYS,
    derive_wash_sale_restrictions,
    merge_restrictions,
)


def apply_derived_restrictions(
    snapshot: RebalanceGroupSnapshot,
    *,
    as_of: datetime,
    window_days: int = WASH_SALE_WINDOW_DAYS,
) -> RebalanceGroupSnapshot:
    """Adds restrictions derived from recent loss sales; stored rows win on conflict."""
    if not snapshot.transactions:
        return snapshot
    derived = derive_wash_sale_restrictions(
        snapshot.transactions, as_of=as_of, window_days=window_days
    )
    if not derived:
        return snapshot
    return snapshot.model_copy(
        update={"restrictions": merge_restrictions(snapshot.restrictions, derived)}
    )


class RebalanceGroupService:
    def __init__(
        self,
        *,
        repository: RebalanceGroupRepository,
        derive_wash_sales: bool = True,
        wash_sale_window_days: int = WASH_SALE_WINDOW_DAYS,
    ) -> None:
        self._repository = repository
        self._derive_wash_sales = derive_wash_sales
        self._wash_sale_window_days = max(1, wash_sale_window_days)
        self._locks: dict[str, Lock] = {}
        self._locks_guard = Lock()

    def _group_lock(self, group_id: str) -> Lock:
        with self._locks_guard:
            lock = self._locks.get(group_id)
            if lock is None:
                lock = Lock()
                self._locks[group_id] = lock
            return lock

    def list_group_ids(self) -> list[str]:
        return sorted(self._repository.list_group_ids())

    def get_snapshot(self, *, group_id: str) -> RebalanceGroupSnapshot:
        snapshot = self._repository.get_snapshot(group_id=group_id)
        if snapshot is None:
            raise RebalanceGroupNotFoundError(f"rebalance group {group_id} not found")
        return snapshot

    def save_snapshot(self, snapshot: RebalanceGroupSnapshot) -> None:
        with self._group_lock(snapshot.group_id):
            self._repository.save_snapshot(snapshot)

    def prepare_snapshot(
        self, snapshot: RebalanceGroupSnapshot, *, as_of: datetime
    ) -> RebalanceGroupSnapshot:
        if not self._derive_wash_sales:
            return snapshot
        return apply_derived_restrictions(
            snapshot, as_of=as_of, window_days=self._wash_sale_window_days
        )

    def rebalance(
        self,
        *,
        group_id: str,
        request: RebalanceRequest,
        as_of: datetime,
        idempotency_key: Optional[str] = None,
    ) -> RebalanceResult:
        """Runs one group at a time so concurrent requests see a consistent snapshot."""
        with self._group_lock(group_id):
            snapshot = self.prepare_snapshot(self.get_snapshot(group_id=group_id), as_of=as_of)
            return run_rebalance(
                snapshot,
                request,
                as_of=as_of,
                request_hash=request_fingerprint(snapshot, request, as_of),
                idempotency_key=idempotency_key,
            )
