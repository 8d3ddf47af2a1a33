"""Rebalance engine orchestration."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Literal, Optional

from src.core.common.canonical import hash_canonical_payload, run_id_from_hash
from src.core.common.diagnostics import make_diagnostics_data
from src.core.errors import (
    GroupMismatchError,
    NoActiveSleevesError,
    NoModelAssignedError,
    UnknownRebalanceMethodError,
)
from src.core.holdings import aggregate_holdings, build_price_lookup
from src.core.metrics import (
    build_post_holdings,
    build_sleeve_summaries,
    build_sleeve_table,
    summarize_trades,
)
from src.core.models import (
    CASH_SLEEVE_ID,
    AccountType,
    DiagnosticsData,
    LineageData,
    RebalanceGroupSnapshot,
    RebalanceMethod,
    RebalanceRequest,
    RebalanceResult,
    Trade,
    ensure_utc,
)
from src.core.rebalance.allocation import run_allocation
from src.core.rebalance.context import RebalanceContext
from src.core.rebalance.invest_cash import run_invest_cash
from src.core.rebalance.ledger import RebalanceLedger, build_cash_trade, consolidate_trades
from src.core.rebalance.tlh import run_tlh_rebalance, run_tlh_swap
from src.core.sleeves import BuiltSleeve, build_sleeves, cash_sleeve
from src.core.wash_sale import RestrictionIndex

MethodRunner = Callable[[RebalanceContext], None]

METHOD_RUNNERS: dict[RebalanceMethod, MethodRunner] = {
    RebalanceMethod.ALLOCATION: run_allocation,
    RebalanceMethod.TLH_SWAP: run_tlh_swap,
    RebalanceMethod.TLH_REBALANCE: run_tlh_rebalance,
    RebalanceMethod.INVEST_CASH: run_invest_cash,
}


@dataclass
class PreparedGroup:
    sleeves: list[BuiltSleeve]
    total_value: Decimal
    restrictions: RestrictionIndex
    account_types: dict[str, AccountType]
    diagnostics: DiagnosticsData


def _default_account_id(snapshot: RebalanceGroupSnapshot) -> Optional[str]:
    if snapshot.accounts:
        return snapshot.accounts[0].account_id
    if snapshot.holdings:
        return snapshot.holdings[0].account_id
    return None


def prepare_group(snapshot: RebalanceGroupSnapshot, *, as_of: datetime) -> PreparedGroup:
    """Validates the model and builds the sleeve graph for one snapshot."""
    if snapshot.model is None:
        raise NoModelAssignedError(f"group {snapshot.group_id} has no model assigned")
    if not any(sleeve.is_active for sleeve in snapshot.model.sleeves):
        raise NoActiveSleevesError(f"model {snapshot.model.model_id} has no active sleeves")

    diagnostics = make_diagnostics_data()
    securities, cash = aggregate_holdings(
        snapshot.holdings,
        snapshot.prices,
        diagnostics.data_quality,
        accounts=snapshot.accounts,
    )
    sleeves, total_value = build_sleeves(
        snapshot.model,
        securities,
        cash,
        build_price_lookup(snapshot.prices),
        diagnostics.data_quality,
        default_account_id=_default_account_id(snapshot),
    )

    account_types = {account.account_id: account.account_type for account in snapshot.accounts}
    for lot in snapshot.holdings:
        account_types.setdefault(lot.account_id, lot.account_type)
    return PreparedGroup(
        sleeves=sleeves,
        total_value=total_value,
        restrictions=RestrictionIndex(snapshot.restrictions, as_of=as_of),
        account_types=account_types,
        diagnostics=diagnostics,
    )


def _finalize_trades(
    ledger: RebalanceLedger, sleeves: list[BuiltSleeve], snapshot: RebalanceGroupSnapshot
) -> list[Trade]:
    trades = consolidate_trades(
        ledger.entries, sleeve_order=[sleeve.sleeve_id for sleeve in sleeves]
    )
    cash_account = cash_sleeve(sleeves).cash.account_id or _default_account_id(snapshot)
    cash_trade = build_cash_trade(ledger.net_cash_flow(), cash_account)
    if cash_trade is not None:
        trades.append(cash_trade)
    return trades


def _derive_status(
    trades: list[Trade], diagnostics: DiagnosticsData
) -> Literal["READY", "PARTIAL", "NO_ACTION"]:
    if not any(trade.sleeve_id != CASH_SLEEVE_ID for trade in trades):
        return "NO_ACTION"
    if (
        diagnostics.blocked_sleeves
        or diagnostics.scaled_buys
        or diagnostics.skipped_sells
        or any(not trade.can_execute for trade in trades)
    ):
        return "PARTIAL"
    return "READY"


def request_fingerprint(
    snapshot: RebalanceGroupSnapshot, request: RebalanceRequest, as_of: datetime
) -> str:
    return hash_canonical_payload(
        {
            "snapshot": snapshot.model_dump(mode="json"),
            "request": request.model_dump(mode="json"),
            "as_of": ensure_utc(as_of).isoformat(),
        }
    )


def run_rebalance(
    snapshot: RebalanceGroupSnapshot,
    request: RebalanceRequest,
    *,
    as_of: datetime,
    request_hash: Optional[str] = None,
    idempotency_key: Optional[str] = None,
) -> RebalanceResult:
    """
    Pure rebalance run: no I/O and no clock reads. The same snapshot,
    request and ``as_of`` always produce the same result.
    """
    if request.group_id != snapshot.group_id:
        raise GroupMismatchError(
            f"request group {request.group_id} does not match snapshot group {snapshot.group_id}"
        )
    runner = METHOD_RUNNERS.get(request.method)
    if runner is None:
        raise UnknownRebalanceMethodError(f"unsupported rebalance method: {request.method}")

    as_of = ensure_utc(as_of)
    prepared = prepare_group(snapshot, as_of=as_of)
    sleeves = prepared.sleeves
    ledger = RebalanceLedger(
        sleeves,
        cash=cash_sleeve(sleeves).current_value,
        as_of_date=as_of.date(),
    )
    ctx = RebalanceContext(
        sleeves=sleeves,
        total_value=prepared.total_value,
        restrictions=prepared.restrictions,
        request=request,
        diagnostics=prepared.diagnostics,
        ledger=ledger,
    )
    runner(ctx)

    trades = _finalize_trades(ledger, sleeves, snapshot)
    request_hash = request_hash or request_fingerprint(snapshot, request, as_of)
    return RebalanceResult(
        rebalance_run_id=run_id_from_hash(request_hash),
        group_id=snapshot.group_id,
        method=request.method,
        as_of=as_of,
        status=_derive_status(trades, ctx.diagnostics),
        total_value=prepared.total_value,
        trades=trades,
        post_holdings=build_post_holdings(sleeves, trades),
        sleeve_summaries=build_sleeve_summaries(sleeves, trades),
        sleeve_table=build_sleeve_table(sleeves, prepared.total_value, prepared.restrictions),
        summary=summarize_trades(trades, sleeves, prepared.account_types),
        diagnostics=ctx.diagnostics,
        lineage=LineageData(
            group_id=snapshot.group_id,
            model_id=snapshot.model.model_id if snapshot.model else None,
            request_hash=request_hash,
            idempotency_key=idempotency_key,
        ),
    )
