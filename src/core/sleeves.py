"""
Sleeve graph construction: model sleeves with their members, plus the
synthetic cash and orphan sleeves.
"""

from decimal import Decimal
from typing import Optional

from src.core.common.diagnostics import record_data_quality
from src.core.holdings import DEFAULT_PRICE
from src.core.models import (
    BPS_DENOMINATOR,
    ORPHAN_RANK,
    CashPosition,
    CashSleeveState,
    ModelSleeve,
    ModelSleeveState,
    OrphanSleeveState,
    RebalanceModel,
    RebalanceSecurityData,
    SleeveState,
)

BuiltSleeve = SleeveState


def portfolio_total_value(
    securities: dict[str, RebalanceSecurityData], cash: CashPosition
) -> Decimal:
    return sum((row.current_value for row in securities.values()), Decimal("0")) + cash.total


def _member_target_pct(sleeve: ModelSleeve) -> Decimal:
    buyable = [member for member in sleeve.members if member.is_active and not member.is_legacy]
    if not buyable:
        return Decimal("0")
    return Decimal(sleeve.target_weight_bps) / BPS_DENOMINATOR / Decimal(len(buyable))


def _build_model_sleeve(
    sleeve: ModelSleeve,
    total_value: Decimal,
    securities: dict[str, RebalanceSecurityData],
    claimed: set[str],
    price_lookup: dict[str, Decimal],
    default_account_id: Optional[str],
    dq_log: dict[str, list[str]],
) -> ModelSleeveState:
    target_pct = Decimal(sleeve.target_weight_bps) / BPS_DENOMINATOR
    per_member_pct = _member_target_pct(sleeve)

    rows: list[RebalanceSecurityData] = []
    for member in sorted(sleeve.members, key=lambda item: (item.rank, item.ticker)):
        if member.ticker in claimed:
            continue
        claimed.add(member.ticker)
        member_pct = per_member_pct if member.is_active and not member.is_legacy else Decimal("0")
        held = securities.get(member.ticker)
        if held is not None:
            rows.append(
                held.model_copy(
                    update={
                        "rank": member.rank,
                        "target_pct": member_pct,
                        "is_active": member.is_active,
                        "is_legacy": member.is_legacy,
                    }
                )
            )
            continue

        price = price_lookup.get(member.ticker)
        defaulted = price is None or price <= 0
        if defaulted:
            price = DEFAULT_PRICE
            if member_pct > 0:
                record_data_quality(dq_log, "price_defaulted", member.ticker)
        rows.append(
            RebalanceSecurityData(
                security_id=member.ticker,
                rank=member.rank,
                target_pct=member_pct,
                price=price,
                price_defaulted=defaulted,
                account_id=default_account_id,
                is_active=member.is_active,
                is_legacy=member.is_legacy,
            )
        )

    return ModelSleeveState(
        sleeve_id=sleeve.sleeve_id,
        name=sleeve.name,
        target_pct=target_pct,
        target_value=total_value * target_pct,
        current_value=sum((row.current_value for row in rows), Decimal("0")),
        securities=rows,
    )


def build_sleeves(
    model: RebalanceModel,
    securities: dict[str, RebalanceSecurityData],
    cash: CashPosition,
    price_lookup: dict[str, Decimal],
    dq_log: dict[str, list[str]],
    *,
    default_account_id: Optional[str] = None,
) -> tuple[list[BuiltSleeve], Decimal]:
    """
    Returns ``[cash, *model sleeves in model order, orphan]`` and the
    portfolio total. A ticker listed in several sleeves belongs to the
    first one. Inactive sleeves are skipped, so their holdings end up in
    the orphan sleeve.
    """
    total_value = portfolio_total_value(securities, cash)
    buy_account_id = cash.account_id or default_account_id

    sleeves: list[BuiltSleeve] = [CashSleeveState(current_value=cash.total, cash=cash)]
    claimed: set[str] = set()
    for sleeve in model.sleeves:
        if not sleeve.is_active:
            continue
        sleeves.append(
            _build_model_sleeve(
                sleeve,
                total_value,
                securities,
                claimed,
                price_lookup,
                buy_account_id,
                dq_log,
            )
        )

    orphans = [
        row.model_copy(update={"rank": ORPHAN_RANK, "target_pct": Decimal("0")})
        for ticker, row in sorted(securities.items())
        if ticker not in claimed
    ]
    sleeves.append(
        OrphanSleeveState(
            current_value=sum((row.current_value for row in orphans), Decimal("0")),
            securities=orphans,
        )
    )
    return sleeves, total_value


def model_sleeves(sleeves: list[BuiltSleeve]) -> list[ModelSleeveState]:
    return [sleeve for sleeve in sleeves if isinstance(sleeve, ModelSleeveState)]


def cash_sleeve(sleeves: list[BuiltSleeve]) -> CashSleeveState:
    for sleeve in sleeves:
        if isinstance(sleeve, CashSleeveState):
            return sleeve
    raise ValueError("sleeve list has no cash sleeve")


def orphan_sleeve(sleeves: list[BuiltSleeve]) -> OrphanSleeveState:
    for sleeve in sleeves:
        if isinstance(sleeve, OrphanSleeveState):
            return sleeve
    raise ValueError("sleeve list has no orphan sleeve")
