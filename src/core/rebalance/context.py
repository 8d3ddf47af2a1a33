from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from src.core.models import (
    DiagnosticsData,
    ModelSleeveState,
    OrphanSleeveState,
    RebalanceRequest,
    TradableSleeve,
    TradeRationale,
)
from src.core.rebalance.ledger import RebalanceLedger
from src.core.sleeves import BuiltSleeve
from src.core.wash_sale import RestrictionIndex

CENT = Decimal("0.01")
RELATIVE_TOLERANCE = Decimal("1e-9")


def floor_shares(value: Decimal) -> Decimal:
    if value <= 0:
        return Decimal("0")
    return value.to_integral_value(rounding=ROUND_FLOOR)


def rationale(code: str, message: str) -> TradeRationale:
    return TradeRationale(code=code, message=message)


@dataclass
class RebalanceContext:
    sleeves: list[BuiltSleeve]
    total_value: Decimal
    restrictions: RestrictionIndex
    request: RebalanceRequest
    diagnostics: DiagnosticsData
    ledger: RebalanceLedger

    @property
    def tolerance(self) -> Decimal:
        return max(CENT, self.total_value * RELATIVE_TOLERANCE)

    @property
    def model_sleeves(self) -> list[ModelSleeveState]:
        return [sleeve for sleeve in self.sleeves if isinstance(sleeve, ModelSleeveState)]

    @property
    def tradable_sleeves(self) -> list[TradableSleeve]:
        return [
            sleeve
            for sleeve in self.sleeves
            if isinstance(sleeve, (ModelSleeveState, OrphanSleeveState))
        ]

    @property
    def overinvestment_factor(self) -> Decimal:
        return Decimal("1") + self.request.max_overinvestment_pct / Decimal("100")

    def warn(self, code: str) -> None:
        if code not in self.diagnostics.warnings:
            self.diagnostics.warnings.append(code)
