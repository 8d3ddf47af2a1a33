"""
Wash-sale restriction lookup, buy-candidate resolution and restriction
derivation from recent loss sales.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from src.core.models import (
    AccountType,
    ModelSleeveState,
    RebalanceSecurityData,
    Transaction,
    WashSaleRestriction,
    ensure_utc,
)

WASH_SALE_WINDOW_DAYS = 30


class RestrictionIndex:
    """Active restrictions keyed by ticker as of one evaluation instant."""

    def __init__(self, restrictions: Iterable[WashSaleRestriction], *, as_of: datetime) -> None:
        self._as_of = ensure_utc(as_of)
        self._by_ticker: dict[str, WashSaleRestriction] = {}
        for row in restrictions:
            if row.restricted_until <= self._as_of:
                continue
            existing = self._by_ticker.get(row.ticker)
            if existing is None or row.restricted_until > existing.restricted_until:
                self._by_ticker[row.ticker] = row

    @property
    def as_of(self) -> datetime:
        return self._as_of

    def is_restricted(self, ticker: str) -> bool:
        return ticker in self._by_ticker

    def get(self, ticker: str) -> Optional[WashSaleRestriction]:
        return self._by_ticker.get(ticker)

    def restricted_tickers(self) -> list[str]:
        return sorted(self._by_ticker)

    def __len__(self) -> int:
        return len(self._by_ticker)


def resolve_buy_candidate(
    sleeve: ModelSleeveState,
    restrictions: RestrictionIndex,
    *,
    exclude: Iterable[str] = (),
) -> Optional[RebalanceSecurityData]:
    """Lowest-rank buyable member that is neither restricted nor excluded."""
    excluded = set(exclude)
    for row in sorted(sleeve.securities, key=lambda item: (item.rank, item.security_id)):
        if not row.is_buyable or row.price <= 0:
            continue
        if row.security_id in excluded or restrictions.is_restricted(row.security_id):
            continue
        return row
    return None


def derive_wash_sale_restrictions(
    transactions: Iterable[Transaction],
    *,
    as_of: datetime,
    window_days: int = WASH_SALE_WINDOW_DAYS,
) -> list[WashSaleRestriction]:
    """
    Taxable-account SELLs at a loss inside the window restrict the ticker
    until ``executed_at + window_days``. The latest such sale per ticker wins.
    """
    as_of = ensure_utc(as_of)
    window = timedelta(days=window_days)
    latest: dict[str, tuple[Transaction, Decimal]] = {}
    for txn in transactions:
        if txn.action != "SELL" or txn.account_type != AccountType.TAXABLE:
            continue
        if txn.realized_gain is None or txn.realized_gain >= 0:
            continue
        if txn.executed_at > as_of or txn.executed_at + window <= as_of:
            continue
        current = latest.get(txn.ticker)
        if current is None or txn.executed_at > current[0].executed_at:
            latest[txn.ticker] = (txn, txn.realized_gain)

    return [
        WashSaleRestriction(
            ticker=ticker,
            restricted_until=txn.executed_at + window,
            sold_at=txn.executed_at,
            loss_amount=-loss,
            source="DERIVED",
        )
        for ticker, (txn, loss) in sorted(latest.items())
    ]


def merge_restrictions(
    stored: list[WashSaleRestriction], derived: list[WashSaleRestriction]
) -> list[WashSaleRestriction]:
    stored_tickers = {row.ticker for row in stored}
    return list(stored) + [row for row in derived if row.ticker not in stored_tickers]
