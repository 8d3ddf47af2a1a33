from typing import Optional, Protocol

from src.core.models import RebalanceGroupSnapshot


class RebalanceGroupRepository(Protocol):
    def get_snapshot(self, *, group_id: str) -> Optional[RebalanceGroupSnapshot]: ...

    def save_snapshot(self, snapshot: RebalanceGroupSnapshot) -> None: ...

    def list_group_ids(self) -> list[str]: ...
