from src.core.groups.catalog import parse_group_snapshots
from src.core.groups.repository import RebalanceGroupRepository
from src.core.groups.service import (
    RebalanceGroupService,
    apply_derived_restrictions,
)

__all__ = [
    "RebalanceGroupRepository",
    "RebalanceGroupService",
    "apply_derived_restrictions",
    "parse_group_snapshots",
]
