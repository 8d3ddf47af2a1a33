from typing import Optional

from src.core.groups.catalog import parse_group_snapshots
from src.infrastructure.groups.in_memory import InMemoryRebalanceGroupRepository


class EnvJsonRebalanceGroupRepository(InMemoryRebalanceGroupRepository):
    def __init__(self, *, snapshots_json: Optional[str]) -> None:
        super().__init__(parse_group_snapshots(snapshots_json).values())
