"""
Allocation: trim overweight sleeves, then buy into underweight ones.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from src.core.models import (
    BlockedSleeve,
    ModelSleeveState,
    RebalanceSecurityData,
    ScaledBuy,
    SkippedSell,
    TradableSleeve,
)
from src.core.rebalance.context import CENT, RebalanceContext, floor_shares, rationale
from src.core.wash_sale import resolve_buy_candidate


@dataclass
class BuyPlan:
    sleeve: ModelSleeveState
    row: RebalanceSecurityData
    qty: Decimal
    scaled: bool = False


def sell_order(securities: list[RebalanceSecurityData]) -> list[RebalanceSecurityData]:
    """Highest rank first, larger unrealized loss first, then ticker."""
    return sorted(securities, key=lambda row: (-row.rank, row.unrealized_gain, row.security_id))


def _taxable_gain(row: RebalanceSecurityData) -> Decimal:
    return sum(
        (position.unrealized_gain for position in row.positions if position.is_taxable),
        Decimal("0"),
    )


def _legacy_skip_reason(ctx: RebalanceContext, row: RebalanceSecurityData) -> Optional[str]:
    if not row.is_legacy:
        return None
    if ctx.restrictions.is_restricted(row.security_id):
        return "LEGACY_WASH_SALE_RESTRICTED"
    if _taxable_gain(row) > 0:
        return "LEGACY_TAXABLE_GAIN"
    return None


def best_trim_qty(
    *,
    sleeve_value: Decimal,
    target_value: Decimal,
    held_qty: Decimal,
    price: Decimal,
) -> Decimal:
    """Whole-share trim among floor, floor+1 and floor-1 closest to target."""
    max_qty = floor_shares(held_qty)
    base = min(floor_shares((sleeve_value - target_value) / price), max_qty)
    candidates = [base]
    if base + 1 <= max_qty:
        candidates.append(base + 1)
    if base - 1 >= 1:
        candidates.append(base - 1)
    return min(
        candidates,
        key=lambda qty: (abs(sleeve_value - qty * price - target_value), candidates.index(qty)),
    )


def _sellable_qty(
    ctx: RebalanceContext, sleeve: TradableSleeve, row: RebalanceSecurityData
) -> Decimal:
    if row.security_id in ctx.ledger.bought_tickers:
        return Decimal("0")
    held = ctx.ledger.held_qty(row.security_id)
    if held <= 0:
        return Decimal("0")
    skip_reason = _legacy_skip_reason(ctx, row)
    if skip_reason is not None:
        ctx.diagnostics.skipped_sells.append(
            SkippedSell(
                security_id=row.security_id,
                sleeve_id=sleeve.sleeve_id,
                reason_code=skip_reason,
            )
        )
        return Decimal("0")
    return held


def _exit_positions(ctx: RebalanceContext, sleeve: TradableSleeve, *, all_rows: bool) -> None:
    for row in sell_order(sleeve.securities):
        if not all_rows and row.is_buyable:
            continue
        held = _sellable_qty(ctx, sleeve, row)
        if held > 0:
            ctx.ledger.sell(
                row,
                sleeve.sleeve_id,
                held,
                rationale("EXIT_POSITION", "Position has no target in the model."),
                whole_shares=False,
            )


def _trim_sleeve(ctx: RebalanceContext, sleeve: TradableSleeve) -> None:
    ledger = ctx.ledger
    for row in sell_order(sleeve.securities):
        if not row.is_buyable:
            continue
        if ledger.sleeve_value(sleeve.sleeve_id) - sleeve.target_value <= ctx.tolerance:
            return
        held = _sellable_qty(ctx, sleeve, row)
        if held <= 0:
            continue
        qty = best_trim_qty(
            sleeve_value=ledger.sleeve_value(sleeve.sleeve_id),
            target_value=sleeve.target_value,
            held_qty=held,
            price=row.price,
        )
        if qty > 0:
            ledger.sell(
                row,
                sleeve.sleeve_id,
                qty,
                rationale("TRIM_OVERWEIGHT", "Sleeve is above target weight."),
            )


def sell_overweight(ctx: RebalanceContext) -> None:
    """
    Orphan and zero-target sleeves are exited in full. Inactive and legacy
    members are exited wherever held. Other overweight sleeves are trimmed
    in whole shares.
    """
    for sleeve in ctx.tradable_sleeves:
        if sleeve.target_value <= CENT:
            _exit_positions(ctx, sleeve, all_rows=True)
            continue
        _exit_positions(ctx, sleeve, all_rows=False)
        if ctx.ledger.sleeve_value(sleeve.sleeve_id) - sleeve.target_value > ctx.tolerance:
            _trim_sleeve(ctx, sleeve)


def _block_sleeve(ctx: RebalanceContext, sleeve: ModelSleeveState, shortfall: Decimal) -> None:
    buyable = [row for row in sleeve.securities if row.is_buyable]
    blocked = sorted(
        row.security_id
        for row in buyable
        if ctx.restrictions.is_restricted(row.security_id)
        or row.security_id in ctx.ledger.sold_tickers
    )
    reason = "WASH_SALE_RESTRICTED" if buyable else "NO_BUYABLE_MEMBERS"
    ctx.diagnostics.blocked_sleeves.append(
        BlockedSleeve(
            sleeve_id=sleeve.sleeve_id,
            reason_code=reason,
            restricted_tickers=blocked,
            deferred_value=shortfall,
        )
    )
    ctx.warn(f"SLEEVE_BUY_BLOCKED_{sleeve.sleeve_id}")


def plan_buys(
    ctx: RebalanceContext, *, target_values: Optional[dict[str, Decimal]] = None
) -> list[BuyPlan]:
    """One candidate per sleeve with a positive target; shortfall floored to shares."""
    plans: list[BuyPlan] = []
    for sleeve in ctx.model_sleeves:
        if sleeve.target_pct <= 0:
            continue
        target = (target_values or {}).get(sleeve.sleeve_id, sleeve.target_value)
        shortfall = target - ctx.ledger.sleeve_value(sleeve.sleeve_id)
        candidate = resolve_buy_candidate(
            sleeve, ctx.restrictions, exclude=ctx.ledger.sold_tickers
        )
        if candidate is None:
            if shortfall > ctx.tolerance:
                _block_sleeve(ctx, sleeve, shortfall)
            continue
        qty = floor_shares(shortfall / candidate.price)
        plans.append(BuyPlan(sleeve=sleeve, row=candidate, qty=qty))
    return plans


def _execute_buy(
    ctx: RebalanceContext, plan: BuyPlan, qty: Decimal, code: str, message: str
) -> Decimal:
    cost = qty * plan.row.price
    beyond_cash = cost > ctx.ledger.cash + CENT
    if plan.scaled:
        code, message = "SCALED_TO_AVAILABLE_CASH", "Buy reduced to fit available cash."
    return ctx.ledger.buy(
        plan.row,
        plan.sleeve.sleeve_id,
        qty,
        rationale(code, message),
        can_execute=not beyond_cash,
        blocking_reason="REQUIRES_OVERINVESTMENT" if beyond_cash else None,
    )


def _scale_to_limit(ctx: RebalanceContext, plans: list[BuyPlan], limit: Decimal) -> None:
    requested = sum((plan.qty * plan.row.price for plan in plans), Decimal("0"))
    if requested <= limit or requested <= 0:
        return
    factor = max(limit, Decimal("0")) / requested
    for plan in plans:
        allowed = floor_shares(plan.qty * factor)
        if allowed < plan.qty:
            ctx.diagnostics.scaled_buys.append(
                ScaledBuy(
                    security_id=plan.row.security_id,
                    sleeve_id=plan.sleeve.sleeve_id,
                    requested_qty=plan.qty,
                    allowed_qty=allowed,
                    reason_code="SCALED_TO_AVAILABLE_CASH",
                )
            )
            plan.qty = allowed
            plan.scaled = True
    ctx.warn("BUYS_SCALED_TO_AVAILABLE_CASH")


def fill_residual(
    ctx: RebalanceContext,
    plans: list[BuyPlan],
    budget: Decimal,
    *,
    target_values: Optional[dict[str, Decimal]] = None,
) -> Decimal:
    """
    One share at a time into the sleeve whose squared dollar deviation
    drops the most. Stops when no share fits the budget or helps.
    """
    spent = Decimal("0")
    while True:
        best: Optional[BuyPlan] = None
        best_gain = Decimal("0")
        for plan in plans:
            price = plan.row.price
            if spent + price > budget:
                continue
            target = (target_values or {}).get(plan.sleeve.sleeve_id, plan.sleeve.target_value)
            gap = target - ctx.ledger.sleeve_value(plan.sleeve.sleeve_id)
            gain = price * (2 * gap - price)
            if gain > best_gain:
                best, best_gain = plan, gain
        if best is None:
            return spent
        spent += _execute_buy(
            ctx, best, Decimal("1"), "BUY_UNDERWEIGHT", "Residual cash fill toward target."
        )


def deploy_overinvestment(
    ctx: RebalanceContext,
    plans: list[BuyPlan],
    budget: Decimal,
    *,
    target_values: Optional[dict[str, Decimal]] = None,
) -> Decimal:
    """
    Leftover cash goes one share at a time to the sleeve that keeps total
    squared percent deviation lowest, never above target * (1 + pct/100).
    """
    factor = ctx.overinvestment_factor
    spent = Decimal("0")
    while True:
        best: Optional[BuyPlan] = None
        best_delta: Optional[Decimal] = None
        for plan in plans:
            target = (target_values or {}).get(plan.sleeve.sleeve_id, plan.sleeve.target_value)
            price = plan.row.price
            if target <= 0 or spent + price > budget:
                continue
            value = ctx.ledger.sleeve_value(plan.sleeve.sleeve_id)
            if value + price > target * factor:
                continue
            delta = ((value + price - target) / target) ** 2 - ((value - target) / target) ** 2
            if best_delta is None or delta < best_delta:
                best, best_delta = plan, delta
        if best is None:
            return spent
        spent += ctx.ledger.buy(
            best.row,
            best.sleeve.sleeve_id,
            Decimal("1"),
            rationale("OVERINVEST", "Leftover cash deployed within the overinvestment cap."),
        )


def buy_underweight(ctx: RebalanceContext) -> None:
    available = max(ctx.ledger.cash, Decimal("0"))
    limit = available * ctx.overinvestment_factor if ctx.request.allow_overinvestment else available
    plans = plan_buys(ctx)
    _scale_to_limit(ctx, plans, limit)

    spent = Decimal("0")
    for plan in plans:
        if plan.qty > 0:
            spent += _execute_buy(
                ctx, plan, plan.qty, "BUY_UNDERWEIGHT", "Sleeve is below target weight."
            )
    for plan in plans:
        plan.scaled = False
    spent += fill_residual(ctx, plans, limit - spent)

    if ctx.request.allow_overinvestment:
        deploy_overinvestment(ctx, plans, max(ctx.ledger.cash, Decimal("0")))


def run_allocation(ctx: RebalanceContext) -> None:
    sell_overweight(ctx)
    buy_underweight(ctx)
