from datetime import date
from decimal import Decimal

from src.core.common.diagnostics import make_empty_data_quality_log
from src.core.holdings import aggregate_holdings, representative_account, resolve_price
from src.core.models import AccountPosition, AccountType
from tests.factories import account, cash_lot, lot, px


def test_cash_tickers_aggregate_into_cash_position():
    dq = make_empty_data_quality_log()
    securities, cash = aggregate_holdings(
        [
            cash_lot("acc_a", "1500"),
            cash_lot("acc_b", "250", ticker="MCASH"),
            cash_lot("acc_b", "100"),
        ],
        [],
        dq,
    )

    assert securities == {}
    assert cash.base_cash == Decimal("1600")
    assert cash.manual_cash == Decimal("250")
    assert cash.total == Decimal("1850")
    assert cash.account_id == "acc_a"


def test_lots_merge_per_ticker_and_keep_account_detail():
    dq = make_empty_data_quality_log()
    securities, _ = aggregate_holdings(
        [
            lot("acc_taxable", "VTI", "10", cost="80", price="100", opened_at=date(2020, 1, 2)),
            lot("acc_taxable", "VTI", "5", cost="120", price="100"),
            lot("acc_ira", "VTI", "20", cost="90", price="100", account_type="TAX_DEFERRED"),
        ],
        [],
        dq,
        accounts=[account("acc_taxable"), account("acc_ira", "TAX_DEFERRED")],
    )

    row = securities["VTI"]
    assert row.current_qty == Decimal("35")
    assert row.cost_basis == Decimal("3200")
    assert row.unrealized_gain == Decimal("300")
    assert row.is_taxable is True
    assert row.account_id == "acc_ira"
    assert [position.account_id for position in row.positions] == ["acc_ira", "acc_taxable"]
    taxable = row.positions[1]
    assert taxable.unrealized_gain == Decimal("100")
    assert len(taxable.lots) == 2


def test_non_positive_lots_are_ignored():
    dq = make_empty_data_quality_log()
    securities, cash = aggregate_holdings(
        [
            lot("acc_taxable", "VTI", "0", price="100"),
            lot("acc_taxable", "BND", "-3", price="70"),
            cash_lot("acc_taxable", "0"),
        ],
        [],
        dq,
    )

    assert securities == {}
    assert cash.total == Decimal("0")


def test_missing_price_defaults_to_one_and_is_recorded():
    dq = make_empty_data_quality_log()
    securities, _ = aggregate_holdings([lot("acc_taxable", "XYZ", "7")], [], dq)

    assert securities["XYZ"].price == Decimal("1.0")
    assert securities["XYZ"].price_defaulted is True
    assert dq["price_defaulted"] == ["XYZ"]


def test_lot_price_wins_over_price_list():
    lookup = {"VTI": Decimal("99")}
    price, defaulted = resolve_price("VTI", [lot("acc_taxable", "VTI", "1", price="101")], lookup)
    assert price == Decimal("101")
    assert defaulted is False

    price, defaulted = resolve_price("VTI", [lot("acc_taxable", "VTI", "1")], lookup)
    assert price == Decimal("99")
    assert defaulted is False


def test_unknown_account_is_recorded_when_accounts_are_listed():
    dq = make_empty_data_quality_log()
    aggregate_holdings(
        [lot("acc_missing", "VTI", "1"), lot("acc_taxable", "BND", "1", price="70")],
        [px("VTI", "100")],
        dq,
        accounts=[account("acc_taxable")],
    )

    assert dq["unknown_accounts"] == ["acc_missing"]


def test_representative_account_breaks_value_ties_by_account_id():
    def position(account_id, value):
        return AccountPosition(
            account_id=account_id,
            account_type=AccountType.TAXABLE,
            qty=Decimal("1"),
            cost_basis=Decimal("0"),
            market_value=Decimal(value),
            unrealized_gain=Decimal(value),
        )

    assert representative_account([position("acc_b", "100"), position("acc_a", "100")]) == "acc_a"
    assert representative_account([position("acc_a", "50"), position("acc_b", "100")]) == "acc_b"
    assert representative_account([]) is None
