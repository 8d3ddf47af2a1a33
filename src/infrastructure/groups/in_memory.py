from copy import deepcopy
from threading import Lock
from typing import Iterable, Optional

from src.core.groups.repository import RebalanceGroupRepository
from src.core.models import RebalanceGroupSnapshot


class InMemoryRebalanceGroupRepository(RebalanceGroupRepository):
    def __init__(self, snapshots: Iterable[RebalanceGroupSnapshot] = ()) -> None:
        self._lock = Lock()
        self._snapshots: dict[str, RebalanceGroupSnapshot] = {
            snapshot.group_id: deepcopy(snapshot) for snapshot in snapshots
        }

    def get_snapshot(self, *, group_id: str) -> Optional[RebalanceGroupSnapshot]:
        with self._lock:
            snapshot = self._snapshots.get(group_id)
            return deepcopy(snapshot) if snapshot is not None else None

    def save_snapshot(self, snapshot: RebalanceGroupSnapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.group_id] = deepcopy(snapshot)

    def list_group_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._snapshots)
