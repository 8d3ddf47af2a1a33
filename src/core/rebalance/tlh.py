"""
Tax-loss harvesting: swap taxable loss positions into a same-sleeve substitute.
"""

from decimal import Decimal

from src.core.models import AccountPosition, BlockedSleeve, ModelSleeveState, RebalanceSecurityData
from src.core.rebalance.allocation import run_allocation
from src.core.rebalance.context import RebalanceContext, floor_shares, rationale
from src.core.wash_sale import resolve_buy_candidate

HarvestCandidate = tuple[ModelSleeveState, RebalanceSecurityData, list[AccountPosition]]


def find_harvest_candidates(ctx: RebalanceContext) -> list[HarvestCandidate]:
    """Taxable positions below cost basis in model sleeves, in sleeve then rank order."""
    candidates: list[HarvestCandidate] = []
    for sleeve in ctx.model_sleeves:
        for row in sorted(sleeve.securities, key=lambda item: (item.rank, item.security_id)):
            losses = [
                position
                for position in row.positions
                if position.is_taxable and position.unrealized_gain < 0 and position.qty > 0
            ]
            if losses:
                candidates.append((sleeve, row, losses))
    return candidates


def run_tlh_swap(ctx: RebalanceContext) -> None:
    ledger = ctx.ledger
    candidates = find_harvest_candidates(ctx)
    if not candidates:
        ctx.warn("NO_TLH_OPPORTUNITIES")
        return

    harvested = {row.security_id for _, row, _ in candidates}
    for sleeve, row, losses in candidates:
        substitute = resolve_buy_candidate(
            sleeve, ctx.restrictions, exclude=harvested | ledger.sold_tickers
        )
        if substitute is None:
            ctx.diagnostics.blocked_sleeves.append(
                BlockedSleeve(
                    sleeve_id=sleeve.sleeve_id,
                    reason_code="TLH_NO_SUBSTITUTE",
                    restricted_tickers=[row.security_id],
                    deferred_value=-sum(
                        (position.unrealized_gain for position in losses), Decimal("0")
                    ),
                )
            )
            ctx.warn(f"TLH_NO_SUBSTITUTE_{row.security_id}")
            continue

        for position in losses:
            qty = ledger.account_qty(row.security_id, position.account_id)
            if qty <= 0:
                continue
            proceeds = ledger.sell_from_account(
                row,
                sleeve.sleeve_id,
                position.account_id,
                qty,
                rationale("TLH_HARVEST", f"Harvest loss, replace with {substitute.security_id}."),
            )
            ledger.buy(
                substitute,
                sleeve.sleeve_id,
                floor_shares(proceeds / substitute.price),
                rationale("TLH_REPLACEMENT", f"Replacement for harvested {row.security_id}."),
                account_id=position.account_id,
            )


def run_tlh_rebalance(ctx: RebalanceContext) -> None:
    run_tlh_swap(ctx)
    run_allocation(ctx)
