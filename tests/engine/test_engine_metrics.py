from datetime import date, timedelta
from decimal import Decimal

from src.core.metrics import summarize_trades
from src.core.models import AccountType, Trade
from src.core.rebalance import prepare_group, run_rebalance
from tests.factories import (
    AS_OF,
    account,
    cash_lot,
    group_snapshot,
    lot,
    member,
    px,
    rebalance_model,
    rebalance_request,
    restriction,
    sleeve,
)


def _mixed_snapshot():
    return group_snapshot(
        accounts=[account("acc_taxable"), account("acc_ira", "TAX_DEFERRED")],
        holdings=[
            lot("acc_taxable", "A", "10", cost="50", price="100", opened_at=date(2020, 5, 1)),
            lot("acc_ira", "B", "10", cost="50", price="100", account_type="TAX_DEFERRED"),
            cash_lot("acc_taxable", "500"),
        ],
        model=rebalance_model(
            [
                sleeve("us_equity", 5000, [member("A", 1), member("C", 2)]),
                sleeve("bonds", 5000, [member("B", 1)]),
            ]
        ),
        prices=[px("C", "25")],
        restrictions=[restriction("C", AS_OF + timedelta(days=4))],
    )


def test_edited_trade_list_summary_counts_taxable_gains_only():
    prepared = prepare_group(_mixed_snapshot(), as_of=AS_OF)
    trades = [
        Trade(
            account_id="acc_taxable",
            security_id="A",
            sleeve_id="us_equity",
            action="SELL",
            qty=Decimal("2"),
            est_price=Decimal("100"),
            est_value=Decimal("-200"),
            realized_gain=Decimal("100"),
            long_term_gain=Decimal("100"),
            short_term_gain=Decimal("0"),
        ),
        Trade(
            account_id="acc_ira",
            security_id="B",
            sleeve_id="bonds",
            action="SELL",
            qty=Decimal("1"),
            est_price=Decimal("100"),
            est_value=Decimal("-100"),
            realized_gain=Decimal("50"),
        ),
        Trade(
            account_id="acc_taxable",
            security_id="$$$",
            sleeve_id="cash",
            action="BUY",
            qty=Decimal("300"),
            est_price=Decimal("1"),
            est_value=Decimal("300"),
        ),
    ]

    summary = summarize_trades(trades, prepared.sleeves, prepared.account_types)

    assert prepared.account_types["acc_ira"] == AccountType.TAX_DEFERRED
    assert summary.total_sell_amount == Decimal("300")
    assert summary.total_buy_amount == Decimal("0")
    assert summary.current_cash == Decimal("500")
    assert summary.cash_remaining == Decimal("800")
    assert summary.capital_gains.total == Decimal("100")
    assert summary.capital_gains.long_term == Decimal("100")
    assert summary.capital_gains.has_taxable_accounts is True
    assert summary.sell_count == 2
    assert summary.buy_count == 0
    assert summary.post_trade_deviation == Decimal("800")


def test_sleeve_table_reports_members_and_wash_sale_risk():
    result = run_rebalance(_mixed_snapshot(), rebalance_request(), as_of=AS_OF)

    table = {row.sleeve_id: row for row in result.sleeve_table}
    assert list(table) == ["cash", "us_equity", "bonds", "orphan-securities"]
    assert table["cash"].current_value == Decimal("500")

    us_equity = table["us_equity"]
    assert us_equity.target_pct == Decimal("50")
    assert us_equity.current_value == Decimal("1000")
    assert us_equity.long_term_gain == Decimal("500")
    a_row, c_row = us_equity.securities
    assert (a_row.ticker, a_row.is_held, a_row.target_pct) == ("A", True, Decimal("25"))
    assert c_row.has_wash_sale_risk is True
    assert c_row.wash_sale.ticker == "C"
    assert a_row.has_wash_sale_risk is False

    bonds = table["bonds"]
    assert bonds.short_term_gain == Decimal("500")
    assert bonds.securities[0].account_ids == ["acc_ira"]


def test_sleeve_summaries_project_post_trade_values(two_sleeve_snapshot):
    result = run_rebalance(two_sleeve_snapshot, rebalance_request(), as_of=AS_OF)

    summaries = {row.sleeve_id: row for row in result.sleeve_summaries}
    assert summaries["us_equity"].trade_value == Decimal("-1000")
    assert summaries["us_equity"].post_trade_value == Decimal("5000")
    assert summaries["intl_equity"].post_trade_pct == Decimal("50")
    assert summaries["cash"].post_trade_value == Decimal("0")
