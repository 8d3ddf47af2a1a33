"""
Post-trade projections and summary cards derived from a trade list.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from src.core.holdings import is_cash_ticker
from src.core.models import (
    LONG_TERM_HOLDING_DAYS,
    AccountType,
    CapitalGains,
    CashSleeveState,
    PostHolding,
    RebalanceSecurityData,
    RebalanceSummary,
    SleeveSummary,
    SleeveTableRow,
    SleeveTableSecurityRow,
    Trade,
)
from src.core.sleeves import BuiltSleeve, cash_sleeve
from src.core.wash_sale import RestrictionIndex

HUNDRED = Decimal("100")


def _pct(value: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return Decimal("0")
    return value / total * HUNDRED


def _signed_qty(trade: Trade) -> Decimal:
    return trade.qty if trade.action == "BUY" else -trade.qty


def _security_trades(trades: Iterable[Trade]) -> list[Trade]:
    return [trade for trade in trades if not is_cash_ticker(trade.security_id)]


def build_post_holdings(sleeves: list[BuiltSleeve], trades: list[Trade]) -> list[PostHolding]:
    quantities: dict[str, Decimal] = defaultdict(Decimal)
    for sleeve in sleeves:
        for row in getattr(sleeve, "securities", []):
            quantities[row.security_id] += row.current_qty
    for trade in _security_trades(trades):
        quantities[trade.security_id] += _signed_qty(trade)
    return [
        PostHolding(security_id=ticker, qty=qty)
        for ticker, qty in sorted(quantities.items())
        if qty > 0
    ]


def build_sleeve_summaries(sleeves: list[BuiltSleeve], trades: list[Trade]) -> list[SleeveSummary]:
    trade_qty: dict[str, Decimal] = defaultdict(Decimal)
    trade_value: dict[str, Decimal] = defaultdict(Decimal)
    for trade in trades:
        sleeve_id = trade.sleeve_id or ""
        trade_qty[sleeve_id] += _signed_qty(trade)
        trade_value[sleeve_id] += trade.est_value

    post_values = {
        sleeve.sleeve_id: sleeve.current_value + trade_value[sleeve.sleeve_id] for sleeve in sleeves
    }
    post_total = sum(post_values.values(), Decimal("0"))
    return [
        SleeveSummary(
            sleeve_id=sleeve.sleeve_id,
            kind=sleeve.kind,
            target_value=sleeve.target_value,
            current_value=sleeve.current_value,
            trade_qty=trade_qty[sleeve.sleeve_id],
            trade_value=trade_value[sleeve.sleeve_id],
            post_trade_value=post_values[sleeve.sleeve_id],
            post_trade_pct=_pct(post_values[sleeve.sleeve_id], post_total),
        )
        for sleeve in sleeves
    ]


def summarize_trades(
    trades: list[Trade],
    sleeves: list[BuiltSleeve],
    account_types: Optional[dict[str, AccountType]] = None,
) -> RebalanceSummary:
    """
    Summary cards. Cash rows are excluded from buy/sell totals and realized
    gains only count in taxable accounts.
    """
    account_types = account_types or {}
    security_trades = _security_trades(trades)
    buys = [trade for trade in security_trades if trade.action == "BUY"]
    sells = [trade for trade in security_trades if trade.action == "SELL"]
    total_buy = sum((trade.est_value for trade in buys), Decimal("0"))
    total_sell = sum((-trade.est_value for trade in sells), Decimal("0"))
    current_cash = cash_sleeve(sleeves).current_value

    total_gain = Decimal("0")
    long_term = Decimal("0")
    short_term = Decimal("0")
    for trade in sells:
        if account_types.get(trade.account_id, AccountType.TAXABLE) != AccountType.TAXABLE:
            continue
        total_gain += trade.realized_gain or Decimal("0")
        long_term += trade.long_term_gain or Decimal("0")
        short_term += trade.short_term_gain or Decimal("0")

    trade_value: dict[str, Decimal] = defaultdict(Decimal)
    for trade in security_trades:
        trade_value[trade.sleeve_id or ""] += trade.est_value
    deviations: list[Decimal] = []
    deviation_pcts: list[Decimal] = []
    for sleeve in sleeves:
        if isinstance(sleeve, CashSleeveState):
            continue
        deviation = abs(sleeve.current_value + trade_value[sleeve.sleeve_id] - sleeve.target_value)
        deviations.append(deviation)
        deviation_pcts.append(_pct(deviation, sleeve.target_value))
    avg_pct = (
        sum(deviation_pcts, Decimal("0")) / Decimal(len(deviation_pcts))
        if deviation_pcts
        else Decimal("0")
    )

    traded_accounts = {trade.account_id for trade in security_trades}
    return RebalanceSummary(
        total_buy_amount=total_buy,
        total_sell_amount=total_sell,
        current_cash=current_cash,
        cash_remaining=current_cash + total_sell - total_buy,
        capital_gains=CapitalGains(
            total=total_gain,
            long_term=long_term,
            short_term=short_term,
            has_taxable_accounts=any(
                account_types.get(account_id, AccountType.TAXABLE) == AccountType.TAXABLE
                for account_id in traded_accounts
            ),
        ),
        post_trade_deviation=sum(deviations, Decimal("0")),
        avg_deviation_pct=avg_pct,
        buy_count=len(buys),
        sell_count=len(sells),
    )


def _split_unrealized(row: RebalanceSecurityData, as_of: date) -> tuple[Decimal, Decimal]:
    long_term = Decimal("0")
    short_term = Decimal("0")
    for position in row.positions:
        for lot in position.lots:
            gain = lot.qty * (row.price - lot.cost_basis_per_share)
            if lot.opened_at is not None and (as_of - lot.opened_at).days > LONG_TERM_HOLDING_DAYS:
                long_term += gain
            else:
                short_term += gain
    return long_term, short_term


def _security_row(
    row: RebalanceSecurityData,
    total_value: Decimal,
    restrictions: RestrictionIndex,
    as_of: date,
) -> SleeveTableSecurityRow:
    current_value = row.current_value
    target_value = total_value * row.target_pct
    long_term, short_term = _split_unrealized(row, as_of)
    return SleeveTableSecurityRow(
        ticker=row.security_id,
        rank=row.rank,
        is_held=row.current_qty > 0,
        is_target=row.target_pct > 0,
        qty=row.current_qty,
        price=row.price,
        current_value=current_value,
        current_pct=_pct(current_value, total_value),
        target_value=target_value,
        target_pct=row.target_pct * HUNDRED,
        difference=current_value - target_value,
        difference_pct=_pct(current_value, total_value) - row.target_pct * HUNDRED,
        account_ids=[position.account_id for position in row.positions],
        cost_basis=row.cost_basis,
        unrealized_gain=row.unrealized_gain,
        long_term_gain=long_term,
        short_term_gain=short_term,
        has_wash_sale_risk=restrictions.is_restricted(row.security_id),
        wash_sale=restrictions.get(row.security_id),
    )


def build_sleeve_table(
    sleeves: list[BuiltSleeve],
    total_value: Decimal,
    restrictions: RestrictionIndex,
) -> list[SleeveTableRow]:
    """Display rows per sleeve with member detail, cash first and orphans last."""
    as_of = restrictions.as_of.date()
    table: list[SleeveTableRow] = []
    for sleeve in sleeves:
        members = [
            _security_row(row, total_value, restrictions, as_of)
            for row in getattr(sleeve, "securities", [])
        ]
        members.sort(key=lambda item: (item.rank, item.ticker))
        current_pct = _pct(sleeve.current_value, total_value)
        table.append(
            SleeveTableRow(
                sleeve_id=sleeve.sleeve_id,
                sleeve_name=sleeve.name,
                kind=sleeve.kind,
                current_value=sleeve.current_value,
                current_pct=current_pct,
                target_value=sleeve.target_value,
                target_pct=sleeve.target_pct * HUNDRED,
                difference=sleeve.current_value - sleeve.target_value,
                difference_pct=current_pct - sleeve.target_pct * HUNDRED,
                unrealized_gain=sum((item.unrealized_gain for item in members), Decimal("0")),
                long_term_gain=sum((item.long_term_gain for item in members), Decimal("0")),
                short_term_gain=sum((item.short_term_gain for item in members), Decimal("0")),
                securities=members,
            )
        )
    return table
