"""
investCash: deploy a cash amount into underweight sleeves without selling.
"""

from decimal import Decimal

from src.core.rebalance.allocation import BuyPlan, deploy_overinvestment, fill_residual, plan_buys
from src.core.rebalance.context import RebalanceContext, floor_shares, rationale


def run_invest_cash(ctx: RebalanceContext) -> None:
    """
    Targets are taken on total value plus any amount above current cash.
    Sleeves furthest below their target weight (current pct minus target
    pct) are filled first.
    """
    ledger = ctx.ledger
    available = max(ledger.cash, Decimal("0"))
    amount = ctx.request.cash_amount if ctx.request.cash_amount is not None else available
    if amount <= 0:
        ctx.warn("NO_CASH_TO_INVEST")
        return

    extra = max(amount - available, Decimal("0"))
    if extra > 0:
        ledger.deposit(extra)
    invest_total = ctx.total_value + extra
    targets = {sleeve.sleeve_id: invest_total * sleeve.target_pct for sleeve in ctx.model_sleeves}

    plans = plan_buys(ctx, target_values=targets)

    def weight_deviation(plan: BuyPlan) -> Decimal:
        sleeve_id = plan.sleeve.sleeve_id
        return (ledger.sleeve_value(sleeve_id) - targets[sleeve_id]) / invest_total

    order = {sleeve.sleeve_id: index for index, sleeve in enumerate(ctx.model_sleeves)}
    plans.sort(key=lambda plan: (weight_deviation(plan), order[plan.sleeve.sleeve_id]))

    remaining = amount
    for plan in plans:
        deficit = targets[plan.sleeve.sleeve_id] - ledger.sleeve_value(plan.sleeve.sleeve_id)
        qty = floor_shares(min(deficit, remaining) / plan.row.price)
        if qty <= 0:
            continue
        remaining -= ledger.buy(
            plan.row,
            plan.sleeve.sleeve_id,
            qty,
            rationale("INVEST_CASH", "Cash deployed toward sleeve target."),
        )

    remaining -= fill_residual(ctx, plans, remaining, target_values=targets)
    if ctx.request.allow_overinvestment:
        deploy_overinvestment(ctx, plans, remaining, target_values=targets)
