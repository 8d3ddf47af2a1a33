from src.infrastructure.groups.env_json import EnvJsonRebalanceGroupRepository
from src.infrastructure.groups.in_memory import InMemoryRebalanceGroupRepository

__all__ = [
    "EnvJsonRebalanceGroupRepository",
    "InMemoryRebalanceGroupRepository",
]
