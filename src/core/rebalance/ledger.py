"""
Working positions, cash and raw trade entries for one rebalance run.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, Optional

from src.core.models import (
    CASH_SLEEVE_ID,
    CASH_TICKER,
    LONG_TERM_HOLDING_DAYS,
    AccountPosition,
    AccountType,
    RebalanceSecurityData,
    Trade,
    TradeRationale,
)
from src.core.sleeves import BuiltSleeve

QTY_EPSILON = Decimal("1e-9")
CASH_EPSILON = Decimal("0.01")


@dataclass
class _OpenLot:
    qty: Decimal
    cost_basis_per_share: Decimal
    opened_at: Optional[date]


def _sell_priority(position: AccountPosition) -> tuple[int, Decimal, str]:
    if position.is_taxable and position.unrealized_gain < 0:
        return (0, position.unrealized_gain, position.account_id)
    if not position.is_taxable:
        return (1, Decimal("0"), position.account_id)
    return (2, position.unrealized_gain, position.account_id)


class RebalanceLedger:
    def __init__(self, sleeves: list[BuiltSleeve], *, cash: Decimal, as_of_date: date) -> None:
        self._as_of_date = as_of_date
        self._qty: dict[tuple[str, str], Decimal] = {}
        self._lots: dict[tuple[str, str], list[_OpenLot]] = {}
        self._account_types: dict[str, AccountType] = {}
        self._positions: dict[str, list[AccountPosition]] = {}
        self._sleeve_values: dict[str, Decimal] = {}
        self._entries: list[Trade] = []
        self.cash = cash
        self.sold_tickers: set[str] = set()
        self.bought_tickers: set[str] = set()

        for sleeve in sleeves:
            self._sleeve_values[sleeve.sleeve_id] = sleeve.current_value
            for row in getattr(sleeve, "securities", []):
                self._positions[row.security_id] = list(row.positions)
                for position in row.positions:
                    key = (row.security_id, position.account_id)
                    self._account_types[position.account_id] = position.account_type
                    self._qty[key] = position.qty
                    self._lots[key] = [
                        _OpenLot(lot.qty, lot.cost_basis_per_share, lot.opened_at)
                        for lot in position.lots
                        if lot.qty > 0
                    ]

    @property
    def entries(self) -> list[Trade]:
        return list(self._entries)

    def held_qty(self, ticker: str) -> Decimal:
        return sum(
            (qty for (held_ticker, _), qty in self._qty.items() if held_ticker == ticker),
            Decimal("0"),
        )

    def account_qty(self, ticker: str, account_id: str) -> Decimal:
        return self._qty.get((ticker, account_id), Decimal("0"))

    def sleeve_value(self, sleeve_id: str) -> Decimal:
        return self._sleeve_values.get(sleeve_id, Decimal("0"))

    def deposit(self, amount: Decimal) -> None:
        self.cash += amount

    def _is_long_term(self, opened_at: Optional[date]) -> bool:
        if opened_at is None:
            return False
        return (self._as_of_date - opened_at).days > LONG_TERM_HOLDING_DAYS

    def _consume_lots(
        self, key: tuple[str, str], qty: Decimal, price: Decimal
    ) -> tuple[Decimal, Decimal]:
        """HIFO lot relief. Returns (long_term_gain, short_term_gain)."""
        long_term = Decimal("0")
        short_term = Decimal("0")
        remaining = qty
        lots = sorted(
            self._lots.get(key, []),
            key=lambda lot: (-lot.cost_basis_per_share, lot.opened_at or date.max),
        )
        for lot in lots:
            if remaining <= 0:
                break
            take = min(lot.qty, remaining)
            gain = take * (price - lot.cost_basis_per_share)
            if self._is_long_term(lot.opened_at):
                long_term += gain
            else:
                short_term += gain
            lot.qty -= take
            remaining -= take
        self._lots[key] = [lot for lot in self._lots.get(key, []) if lot.qty > 0]
        return long_term, short_term

    def sell_from_account(
        self,
        row: RebalanceSecurityData,
        sleeve_id: str,
        account_id: str,
        qty: Decimal,
        rationale: TradeRationale,
    ) -> Decimal:
        key = (row.security_id, account_id)
        qty = min(qty, self._qty.get(key, Decimal("0")))
        if qty <= QTY_EPSILON:
            return Decimal("0")
        long_term, short_term = self._consume_lots(key, qty, row.price)
        value = qty * row.price
        self._qty[key] -= qty
        self._sleeve_values[sleeve_id] = self.sleeve_value(sleeve_id) - value
        self.cash += value
        self.sold_tickers.add(row.security_id)
        self._entries.append(
            Trade(
                account_id=account_id,
                security_id=row.security_id,
                sleeve_id=sleeve_id,
                action="SELL",
                qty=qty,
                est_price=row.price,
                est_value=-value,
                rationale=rationale,
                realized_gain=long_term + short_term,
                long_term_gain=long_term,
                short_term_gain=short_term,
            )
        )
        return value

    def sell(
        self,
        row: RebalanceSecurityData,
        sleeve_id: str,
        qty: Decimal,
        rationale: TradeRationale,
        *,
        whole_shares: bool = True,
    ) -> Decimal:
        """
        Sells across accounts: taxable losses first, then tax-advantaged
        accounts, then taxable gains (smallest first). With whole_shares the
        requested quantity is floored once; a fractional account position
        carries its remainder into the next account.
        """
        remaining = qty.to_integral_value(rounding=ROUND_FLOOR) if whole_shares else qty
        proceeds = Decimal("0")
        for position in sorted(self._positions.get(row.security_id, []), key=_sell_priority):
            if remaining <= QTY_EPSILON:
                break
            available = self.account_qty(row.security_id, position.account_id)
            take = min(available, remaining)
            if take <= QTY_EPSILON:
                continue
            proceeds += self.sell_from_account(row, sleeve_id, position.account_id, take, rationale)
            remaining -= take
        return proceeds

    def buy(
        self,
        row: RebalanceSecurityData,
        sleeve_id: str,
        qty: Decimal,
        rationale: TradeRationale,
        *,
        account_id: Optional[str] = None,
        can_execute: bool = True,
        blocking_reason: Optional[str] = None,
    ) -> Decimal:
        target_account = account_id or row.account_id
        if qty <= 0 or target_account is None:
            return Decimal("0")
        value = qty * row.price
        key = (row.security_id, target_account)
        self._qty[key] = self._qty.get(key, Decimal("0")) + qty
        self._sleeve_values[sleeve_id] = self.sleeve_value(sleeve_id) + value
        self.cash -= value
        self.bought_tickers.add(row.security_id)
        self._entries.append(
            Trade(
                account_id=target_account,
                security_id=row.security_id,
                sleeve_id=sleeve_id,
                action="BUY",
                qty=qty,
                est_price=row.price,
                est_value=value,
                can_execute=can_execute,
                blocking_reason=blocking_reason,
                rationale=rationale,
            )
        )
        return value

    def net_cash_flow(self) -> Decimal:
        return -sum((entry.est_value for entry in self._entries), Decimal("0"))


def _sum_optional(values: Iterable[Optional[Decimal]]) -> Optional[Decimal]:
    present = [value for value in values if value is not None]
    if not present:
        return None
    return sum(present, Decimal("0"))


def consolidate_trades(entries: list[Trade], *, sleeve_order: list[str]) -> list[Trade]:
    """
    Nets entries per (account, security). Output order: SELLs, then BUYs,
    each by sleeve order, security id, account id.
    """
    grouped: dict[tuple[str, str], list[Trade]] = {}
    for entry in entries:
        grouped.setdefault((entry.account_id, entry.security_id), []).append(entry)

    consolidated: list[Trade] = []
    for (account_id, security_id), rows in grouped.items():
        net_qty = sum(
            (row.qty if row.action == "BUY" else -row.qty for row in rows), Decimal("0")
        )
        if abs(net_qty) <= QTY_EPSILON:
            continue
        action = "BUY" if net_qty > 0 else "SELL"
        same_side = [row for row in rows if row.action == action]
        gross_qty = sum((row.qty for row in same_side), Decimal("0"))
        share = abs(net_qty) / gross_qty
        price = same_side[0].est_price
        qty = abs(net_qty)

        def scaled(values: Iterable[Optional[Decimal]]) -> Optional[Decimal]:
            total = _sum_optional(values)
            return None if total is None else total * share

        consolidated.append(
            Trade(
                account_id=account_id,
                security_id=security_id,
                sleeve_id=same_side[0].sleeve_id,
                action=action,
                qty=qty,
                est_price=price,
                est_value=qty * price if action == "BUY" else -(qty * price),
                can_execute=all(row.can_execute for row in same_side),
                blocking_reason=next(
                    (row.blocking_reason for row in same_side if row.blocking_reason), None
                ),
                rationale=same_side[0].rationale,
                realized_gain=scaled(row.realized_gain for row in same_side),
                long_term_gain=scaled(row.long_term_gain for row in same_side),
                short_term_gain=scaled(row.short_term_gain for row in same_side),
            )
        )

    order = {sleeve_id: index for index, sleeve_id in enumerate(sleeve_order)}
    return sorted(
        consolidated,
        key=lambda trade: (
            0 if trade.action == "SELL" else 1,
            order.get(trade.sleeve_id or "", len(order)),
            trade.security_id,
            trade.account_id,
        ),
    )


def build_cash_trade(net_cash: Decimal, account_id: Optional[str]) -> Optional[Trade]:
    """Net cash row: BUY when cash accumulates, SELL when it is consumed."""
    if account_id is None or abs(net_cash) <= CASH_EPSILON:
        return None
    action = "BUY" if net_cash > 0 else "SELL"
    return Trade(
        account_id=account_id,
        security_id=CASH_TICKER,
        sleeve_id=CASH_SLEEVE_ID,
        action=action,
        qty=abs(net_cash),
        est_price=Decimal("1"),
        est_value=net_cash,
        rationale=TradeRationale(
            code="CASH_FLOW",
            message="Net cash movement from security trades.",
        ),
    )
