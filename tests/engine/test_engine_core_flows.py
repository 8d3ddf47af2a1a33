from datetime import date
from decimal import Decimal

import pytest

from src.core.errors import GroupMismatchError, NoActiveSleevesError, NoModelAssignedError
from src.core.models import Trade, TradeRationale
from src.core.rebalance import prepare_group, request_fingerprint, run_rebalance
from src.core.rebalance.context import rationale
from src.core.rebalance.ledger import RebalanceLedger, build_cash_trade, consolidate_trades
from src.core.sleeves import model_sleeves
from tests.factories import (
    AS_OF,
    account,
    group_snapshot,
    lot,
    member,
    rebalance_model,
    rebalance_request,
    sleeve,
)


def _trade(account_id, ticker, sleeve_id, action, qty, price="10"):
    qty = Decimal(qty)
    value = qty * Decimal(price)
    return Trade(
        account_id=account_id,
        security_id=ticker,
        sleeve_id=sleeve_id,
        action=action,
        qty=qty,
        est_price=Decimal(price),
        est_value=value if action == "BUY" else -value,
        rationale=TradeRationale(code=f"{action}_TEST", message="test"),
    )


def _ledger_for(snapshot):
    prepared = prepare_group(snapshot, as_of=AS_OF)
    ledger = RebalanceLedger(prepared.sleeves, cash=Decimal("0"), as_of_date=AS_OF.date())
    (row,) = model_sleeves(prepared.sleeves)[0].securities
    return ledger, row


def test_group_without_model_is_rejected():
    with pytest.raises(NoModelAssignedError) as exc_info:
        run_rebalance(group_snapshot(), rebalance_request(), as_of=AS_OF)
    assert exc_info.value.code == "NO_MODEL_ASSIGNED"


def test_model_without_active_sleeves_is_rejected():
    snapshot = group_snapshot(
        model=rebalance_model([sleeve("s1", 10000, [member("A", 1)], is_active=False)])
    )
    with pytest.raises(NoActiveSleevesError):
        run_rebalance(snapshot, rebalance_request(), as_of=AS_OF)


def test_request_for_another_group_is_rejected(two_sleeve_snapshot):
    with pytest.raises(GroupMismatchError):
        run_rebalance(
            two_sleeve_snapshot, rebalance_request(group_id="grp_other"), as_of=AS_OF
        )


def test_same_inputs_produce_identical_results(two_sleeve_snapshot):
    first = run_rebalance(two_sleeve_snapshot, rebalance_request(), as_of=AS_OF)
    second = run_rebalance(two_sleeve_snapshot, rebalance_request(), as_of=AS_OF)

    assert first.model_dump() == second.model_dump()
    assert first.rebalance_run_id.startswith("rb_")
    assert len(first.rebalance_run_id) == 15
    assert first.lineage.request_hash == request_fingerprint(
        two_sleeve_snapshot, rebalance_request(), AS_OF
    )
    assert first.lineage.model_id == "m_test"


def test_supplied_request_hash_and_key_flow_into_lineage(two_sleeve_snapshot):
    result = run_rebalance(
        two_sleeve_snapshot,
        rebalance_request(),
        as_of=AS_OF,
        request_hash="sha256:abcdef0123456789",
        idempotency_key="idem-1",
    )

    assert result.rebalance_run_id == "rb_abcdef012345"
    assert result.lineage.idempotency_key == "idem-1"


def test_sells_draw_from_taxable_losses_then_tax_advantaged_accounts():
    snapshot = group_snapshot(
        accounts=[
            account("acc_gain"),
            account("acc_ira", "TAX_DEFERRED"),
            account("acc_loss"),
        ],
        holdings=[
            lot("acc_gain", "A", "10", cost="10", price="100"),
            lot("acc_ira", "A", "10", cost="10", price="100", account_type="TAX_DEFERRED"),
            lot("acc_loss", "A", "10", cost="200", price="100"),
        ],
        model=rebalance_model([sleeve("s1", 10000, [member("A", 1)])]),
    )
    ledger, row = _ledger_for(snapshot)

    proceeds = ledger.sell(row, "s1", Decimal("15"), rationale("TEST", "test"))

    assert proceeds == Decimal("1500")
    assert [(entry.account_id, entry.qty) for entry in ledger.entries] == [
        ("acc_loss", Decimal("10")),
        ("acc_ira", Decimal("5")),
    ]
    assert ledger.account_qty("A", "acc_gain") == Decimal("10")
    assert ledger.cash == Decimal("1500")


def test_lot_relief_takes_highest_cost_first_and_splits_holding_period():
    snapshot = group_snapshot(
        holdings=[
            lot("acc_taxable", "A", "50", cost="10", price="80", opened_at=date(2020, 1, 2)),
            lot("acc_taxable", "A", "50", cost="100", price="80", opened_at=date(2026, 1, 2)),
        ],
        model=rebalance_model([sleeve("s1", 10000, [member("A", 1)])]),
    )
    ledger, row = _ledger_for(snapshot)

    ledger.sell(row, "s1", Decimal("60"), rationale("TEST", "test"))

    (entry,) = ledger.entries
    assert entry.short_term_gain == Decimal("-1000")
    assert entry.long_term_gain == Decimal("700")
    assert entry.realized_gain == Decimal("-300")


def test_trades_net_per_account_and_security_and_sort_sells_first():
    entries = [
        _trade("acc_1", "Y", "s1", "BUY", "10"),
        _trade("acc_1", "X", "s2", "SELL", "3"),
        _trade("acc_1", "Y", "s1", "SELL", "4"),
        _trade("acc_1", "Z", "s1", "SELL", "2"),
        _trade("acc_1", "W", "s2", "BUY", "5"),
        _trade("acc_1", "W", "s2", "SELL", "5"),
    ]

    trades = consolidate_trades(entries, sleeve_order=["cash", "s1", "s2", "orphan-securities"])

    assert [(t.action, t.security_id, t.qty, t.est_value) for t in trades] == [
        ("SELL", "Z", Decimal("2"), Decimal("-20")),
        ("SELL", "X", Decimal("3"), Decimal("-30")),
        ("BUY", "Y", Decimal("6"), Decimal("60")),
    ]


def test_cash_row_reflects_net_cash_movement():
    inflow = build_cash_trade(Decimal("250.50"), "acc_1")
    assert (inflow.action, inflow.qty, inflow.security_id) == ("BUY", Decimal("250.50"), "$$$")
    assert inflow.sleeve_id == "cash"

    outflow = build_cash_trade(Decimal("-75"), "acc_1")
    assert (outflow.action, outflow.qty, outflow.est_value) == (
        "SELL",
        Decimal("75"),
        Decimal("-75"),
    )

    assert build_cash_trade(Decimal("0.01"), "acc_1") is None
    assert build_cash_trade(Decimal("100"), None) is None


def test_whole_share_sell_carries_fractional_remainder_into_next_account():
    snapshot = group_snapshot(
        accounts=[account("acc_gain"), account("acc_loss")],
        holdings=[
            lot("acc_gain", "A", "10", cost="10", price="100"),
            lot("acc_loss", "A", "2.5", cost="200", price="100"),
        ],
        model=rebalance_model([sleeve("s1", 10000, [member("A", 1)])]),
    )
    ledger, row = _ledger_for(snapshot)

    proceeds = ledger.sell(row, "s1", Decimal("5"), rationale("TEST", "test"))

    assert proceeds == Decimal("500")
    assert [(entry.account_id, entry.qty) for entry in ledger.entries] == [
        ("acc_loss", Decimal("2.5")),
        ("acc_gain", Decimal("2.5")),
    ]
    assert ledger.account_qty("A", "acc_gain") == Decimal("7.5")


def test_whole_share_sell_floors_the_requested_quantity_once():
    snapshot = group_snapshot(
        holdings=[lot("acc_taxable", "A", "10", cost="10", price="100")],
        model=rebalance_model([sleeve("s1", 10000, [member("A", 1)])]),
    )
    ledger, row = _ledger_for(snapshot)

    ledger.sell(row, "s1", Decimal("4.7"), rationale("TEST", "test"))

    (entry,) = ledger.entries
    assert entry.qty == Decimal("4")
