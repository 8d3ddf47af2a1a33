from decimal import Decimal

from pydantic import TypeAdapter

from src.core.common.diagnostics import make_empty_data_quality_log
from src.core.holdings import aggregate_holdings, build_price_lookup
from src.core.models import ORPHAN_RANK
from src.core.sleeves import BuiltSleeve, build_sleeves, cash_sleeve, model_sleeves, orphan_sleeve
from tests.factories import cash_lot, lot, member, px, rebalance_model, sleeve


def _build(holdings, model, prices=()):
    dq = make_empty_data_quality_log()
    securities, cash = aggregate_holdings(holdings, list(prices), dq)
    sleeves, total = build_sleeves(
        model,
        securities,
        cash,
        build_price_lookup(list(prices)),
        dq,
        default_account_id="acc_taxable",
    )
    return sleeves, total, dq


def _rows(built_sleeve):
    return {row.security_id: row for row in built_sleeve.securities}


def test_sleeve_graph_has_cash_first_and_orphans_last():
    sleeves, total, _ = _build(
        [
            lot("acc_taxable", "A", "10", price="100"),
            lot("acc_taxable", "L", "5", price="100"),
            lot("acc_taxable", "E", "3", price="100"),
            lot("acc_taxable", "Z", "2", price="50"),
            cash_lot("acc_taxable", "900"),
        ],
        rebalance_model(
            [
                sleeve(
                    "s1",
                    6000,
                    [member("A", 1), member("B", 2), member("L", 3, is_legacy=True)],
                ),
                sleeve("s2", 4000, [member("C", 1, is_active=False), member("D", 2)]),
                sleeve("s3", 0, [member("E", 1)], is_active=False),
            ]
        ),
        prices=[px("B", "50"), px("C", "20"), px("D", "40")],
    )

    assert total == Decimal("2800")
    assert [item.sleeve_id for item in sleeves] == ["cash", "s1", "s2", "orphan-securities"]
    assert cash_sleeve(sleeves).current_value == Decimal("900")

    s1, s2 = model_sleeves(sleeves)
    assert s1.target_pct == Decimal("0.6")
    assert s1.target_value == Decimal("1680")
    assert s1.current_value == Decimal("1500")
    s1_rows = _rows(s1)
    assert s1_rows["A"].target_pct == Decimal("0.3")
    assert s1_rows["B"].target_pct == Decimal("0.3")
    assert s1_rows["L"].target_pct == Decimal("0")
    assert s1_rows["L"].is_buyable is False
    assert s1_rows["B"].current_qty == Decimal("0")
    assert s1_rows["B"].account_id == "acc_taxable"

    s2_rows = _rows(s2)
    assert s2_rows["C"].target_pct == Decimal("0")
    assert s2_rows["D"].target_pct == Decimal("0.4")

    orphans = orphan_sleeve(sleeves)
    assert [row.security_id for row in orphans.securities] == ["E", "Z"]
    assert all(row.rank == ORPHAN_RANK for row in orphans.securities)
    assert orphans.current_value == Decimal("400")


def test_ticker_listed_in_two_sleeves_belongs_to_first():
    sleeves, _, _ = _build(
        [lot("acc_taxable", "A", "10", price="100")],
        rebalance_model(
            [
                sleeve("s1", 5000, [member("A", 1)]),
                sleeve("s2", 5000, [member("A", 1), member("B", 2)]),
            ]
        ),
        prices=[px("B", "10")],
    )

    s1, s2 = model_sleeves(sleeves)
    assert list(_rows(s1)) == ["A"]
    assert list(_rows(s2)) == ["B"]
    assert s2.current_value == Decimal("0")


def test_sleeve_without_buyable_members_has_zero_member_targets():
    sleeves, _, _ = _build(
        [lot("acc_taxable", "OLD", "4", price="25")],
        rebalance_model([sleeve("s1", 10000, [member("OLD", 1, is_legacy=True)])]),
    )

    (s1,) = model_sleeves(sleeves)
    assert s1.target_pct == Decimal("1")
    assert _rows(s1)["OLD"].target_pct == Decimal("0")


def test_unpriced_buyable_member_is_recorded_as_data_quality_issue():
    sleeves, _, dq = _build(
        [cash_lot("acc_taxable", "100")],
        rebalance_model(
            [sleeve("s1", 10000, [member("NEW", 1), member("GONE", 2, is_active=False)])]
        ),
    )

    (s1,) = model_sleeves(sleeves)
    assert _rows(s1)["NEW"].price == Decimal("1.0")
    assert dq["price_defaulted"] == ["NEW"]


def test_built_sleeves_round_trip_through_the_kind_discriminator():
    sleeves, _, _ = _build(
        [
            lot("acc_taxable", "A", "10", price="100"),
            lot("acc_taxable", "Z", "2", price="50"),
            cash_lot("acc_taxable", "100"),
        ],
        rebalance_model([sleeve("s1", 10000, [member("A", 1)])]),
    )
    adapter = TypeAdapter(list[BuiltSleeve])

    restored = adapter.validate_json(adapter.dump_json(sleeves))

    assert [item.kind for item in restored] == ["CASH", "MODEL", "ORPHAN"]
    assert [type(item) for item in restored] == [type(item) for item in sleeves]
    assert restored[1].current_value == Decimal("1000")
