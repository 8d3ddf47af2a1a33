"""
Lot-level holdings aggregation into per-security working rows and a cash position.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Optional

from src.core.common.diagnostics import record_data_quality
from src.core.models import (
    CASH_TICKER,
    CASH_TICKERS,
    MANUAL_CASH_TICKER,
    Account,
    AccountPosition,
    AccountType,
    CashPosition,
    Holding,
    RebalanceSecurityData,
    SecurityPrice,
    TaxLot,
)

DEFAULT_PRICE = Decimal("1.0")


def is_cash_ticker(ticker: str) -> bool:
    return ticker in CASH_TICKERS


def build_price_lookup(prices: list[SecurityPrice]) -> dict[str, Decimal]:
    return {row.ticker: row.price for row in prices}


def resolve_price(
    ticker: str,
    lots: list[Holding],
    price_lookup: dict[str, Decimal],
) -> tuple[Decimal, bool]:
    """Returns (price, defaulted). Lot prices win over the price list."""
    for lot in lots:
        if lot.price is not None and lot.price > 0:
            return lot.price, False
    price = price_lookup.get(ticker)
    if price is not None and price > 0:
        return price, False
    return DEFAULT_PRICE, True


def _account_types(
    holdings: list[Holding], accounts: list[Account], dq_log: dict[str, list[str]]
) -> dict[str, AccountType]:
    types = {account.account_id: account.account_type for account in accounts}
    for lot in holdings:
        if lot.account_id not in types:
            if accounts:
                record_data_quality(dq_log, "unknown_accounts", lot.account_id)
            types[lot.account_id] = lot.account_type
    return types


def _build_account_position(
    account_id: str,
    account_type: AccountType,
    lots: list[Holding],
    price: Decimal,
) -> AccountPosition:
    qty = sum((lot.qty for lot in lots), Decimal("0"))
    cost_basis = sum((lot.qty * lot.cost_basis_per_share for lot in lots), Decimal("0"))
    market_value = qty * price
    return AccountPosition(
        account_id=account_id,
        account_type=account_type,
        qty=qty,
        cost_basis=cost_basis,
        market_value=market_value,
        unrealized_gain=market_value - cost_basis,
        lots=[
            TaxLot(
                qty=lot.qty,
                cost_basis_per_share=lot.cost_basis_per_share,
                opened_at=lot.opened_at,
            )
            for lot in lots
        ],
    )


def representative_account(positions: list[AccountPosition]) -> Optional[str]:
    if not positions:
        return None
    return min(positions, key=lambda pos: (-pos.market_value, pos.account_id)).account_id


def aggregate_holdings(
    holdings: list[Holding],
    prices: list[SecurityPrice],
    dq_log: dict[str, list[str]],
    accounts: Optional[list[Account]] = None,
) -> tuple[dict[str, RebalanceSecurityData], CashPosition]:
    """
    Groups lots by ticker. Non-cash rows come back without sleeve
    metadata (rank 999, zero target); the sleeve builder overlays it.
    """
    account_types = _account_types(holdings, accounts or [], dq_log)
    price_lookup = build_price_lookup(prices)

    cash = CashPosition()
    lots_by_ticker: dict[str, list[Holding]] = defaultdict(list)
    for lot in holdings:
        if lot.qty <= 0:
            continue
        if is_cash_ticker(lot.ticker):
            value = lot.qty * (lot.price if lot.price is not None and lot.price > 0 else 1)
            if lot.ticker == CASH_TICKER:
                cash.base_cash += value
            elif lot.ticker == MANUAL_CASH_TICKER:
                cash.manual_cash += value
            cash.by_account[lot.account_id] = (
                cash.by_account.get(lot.account_id, Decimal("0")) + value
            )
            continue
        lots_by_ticker[lot.ticker].append(lot)

    securities: dict[str, RebalanceSecurityData] = {}
    for ticker in sorted(lots_by_ticker):
        lots = lots_by_ticker[ticker]
        price, defaulted = resolve_price(ticker, lots, price_lookup)
        if defaulted:
            record_data_quality(dq_log, "price_defaulted", ticker)

        lots_by_account: dict[str, list[Holding]] = defaultdict(list)
        for lot in lots:
            lots_by_account[lot.account_id].append(lot)
        positions = [
            _build_account_position(account_id, account_types[account_id], account_lots, price)
            for account_id, account_lots in sorted(lots_by_account.items())
        ]

        qty = sum((pos.qty for pos in positions), Decimal("0"))
        if qty <= 0:
            continue
        securities[ticker] = RebalanceSecurityData(
            security_id=ticker,
            current_qty=qty,
            price=price,
            price_defaulted=defaulted,
            account_id=representative_account(positions),
            is_taxable=any(pos.is_taxable for pos in positions),
            cost_basis=sum((pos.cost_basis for pos in positions), Decimal("0")),
            unrealized_gain=sum((pos.unrealized_gain for pos in positions), Decimal("0")),
            positions=positions,
        )
    return securities, cash
