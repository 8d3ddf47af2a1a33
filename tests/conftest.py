"""
FILE: tests/conftest.py
Shared fixtures for engine and API tests.
"""

from pathlib import Path

import pytest

from src.api.services import rebalance_service
from tests.factories import (
    account,
    cash_lot,
    group_snapshot,
    lot,
    member,
    px,
    rebalance_model,
    sleeve,
)


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if (
            _has_marker(item, "unit")
            or _has_marker(item, "integration")
            or _has_marker(item, "e2e")
        ):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        if "/tests/e2e/" in path:
            item.add_marker(pytest.mark.e2e)
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def isolated_rebalance_runtime(monkeypatch: pytest.MonkeyPatch):
    """Fresh idempotency cache and no seeded groups for every test."""
    monkeypatch.delenv("REBALANCE_GROUP_SNAPSHOTS_JSON", raising=False)
    monkeypatch.delenv("REBALANCE_IDEMPOTENCY_REPLAY_ENABLED", raising=False)
    monkeypatch.delenv("REBALANCE_IDEMPOTENCY_CACHE_MAX_SIZE", raising=False)
    monkeypatch.delenv("REBALANCE_DERIVE_WASH_SALES_FROM_TRANSACTIONS", raising=False)
    rebalance_service.REBALANCE_IDEMPOTENCY_CACHE.clear()
    yield
    rebalance_service.REBALANCE_IDEMPOTENCY_CACHE.clear()


@pytest.fixture
def two_sleeve_snapshot():
    """US sleeve overweight by $1,000 and intl sleeve underweight by the same amount."""
    return group_snapshot(
        accounts=[account("acc_taxable")],
        holdings=[
            lot("acc_taxable", "VTI", "60", cost="90", price="100"),
            lot("acc_taxable", "VXUS", "40", cost="90", price="100"),
        ],
        model=rebalance_model(
            [
                sleeve("us_equity", 5000, [member("VTI", 1), member("ITOT", 2)]),
                sleeve("intl_equity", 5000, [member("VXUS", 1)]),
            ]
        ),
        prices=[px("ITOT", "100")],
    )


@pytest.fixture
def cash_only_snapshot():
    return group_snapshot(
        holdings=[cash_lot("acc_taxable", "10000")],
        model=rebalance_model(
            [sleeve("us_equity", 10000, [member("VTI", 1), member("ITOT", 2)])]
        ),
        prices=[px("VTI", "100"), px("ITOT", "50")],
    )
