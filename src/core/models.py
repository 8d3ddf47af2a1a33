"""
FILE: src/core/models.py
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

CASH_TICKER = "$$$"
MANUAL_CASH_TICKER = "MCASH"
CASH_TICKERS = frozenset({CASH_TICKER, MANUAL_CASH_TICKER})
CASH_SLEEVE_ID = "cash"
ORPHAN_SLEEVE_ID = "orphan-securities"
ORPHAN_RANK = 999
BPS_DENOMINATOR = Decimal("10000")
LONG_TERM_HOLDING_DAYS = 365


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are treated as UTC so comparisons never mix awareness."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AccountType(str, Enum):
    TAXABLE = "TAXABLE"
    TAX_DEFERRED = "TAX_DEFERRED"
    TAX_EXEMPT = "TAX_EXEMPT"


class RebalanceMethod(str, Enum):
    ALLOCATION = "allocation"
    TLH_SWAP = "tlhSwap"
    TLH_REBALANCE = "tlhRebalance"
    INVEST_CASH = "investCash"


class Account(BaseModel):
    account_id: str = Field(description="Brokerage account identifier.", examples=["acc_taxable"])
    name: Optional[str] = Field(default=None, description="Display name.")
    account_type: AccountType = Field(
        default=AccountType.TAXABLE,
        description="Tax treatment of the account.",
        examples=["TAXABLE"],
    )


class Holding(BaseModel):
    """One tax lot of a security held in one account."""

    account_id: str = Field(description="Account holding the lot.", examples=["acc_taxable"])
    ticker: str = Field(description="Security ticker or cash marker.", examples=["VTI"])
    qty: Decimal = Field(description="Lot quantity.", examples=["100"])
    cost_basis_per_share: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Per-share cost basis of the lot.",
        examples=["210.50"],
    )
    price: Optional[Decimal] = Field(
        default=None,
        description="Current market price when known to the caller.",
        examples=["225.10"],
    )
    opened_at: Optional[date] = Field(
        default=None,
        description="Lot acquisition date used for long/short-term classification.",
        examples=["2024-02-01"],
    )
    account_type: AccountType = Field(
        default=AccountType.TAXABLE,
        description="Tax treatment of the holding account.",
    )


class SecurityPrice(BaseModel):
    ticker: str = Field(description="Security ticker.", examples=["VXUS"])
    price: Decimal = Field(gt=0, description="Current market price.", examples=["61.20"])


class SleeveMember(BaseModel):
    ticker: str = Field(description="Member security ticker.", examples=["VTI"])
    rank: int = Field(ge=0, description="Preference rank, lower is preferred.", examples=[1])
    is_active: bool = Field(default=True, description="Inactive members are never bought.")
    is_legacy: bool = Field(
        default=False,
        description="Legacy members keep a zero target and are only sold down.",
    )


class ModelSleeve(BaseModel):
    sleeve_id: str = Field(description="Sleeve identifier.", examples=["us_equity"])
    name: Optional[str] = Field(default=None, description="Display name.")
    target_weight_bps: int = Field(
        ge=0,
        le=10000,
        description="Target weight in basis points of total portfolio value.",
        examples=[6000],
    )
    is_active: bool = Field(default=True, description="Inactive sleeves are ignored.")
    members: List[SleeveMember] = Field(default_factory=list, description="Sleeve members.")

    @field_validator("members")
    @classmethod
    def validate_unique_member_tickers(cls, members: List[SleeveMember]) -> List[SleeveMember]:
        tickers = [member.ticker for member in members]
        if len(tickers) != len(set(tickers)):
            raise ValueError("sleeve member tickers must be unique")
        return members


class RebalanceModel(BaseModel):
    model_config = {"protected_namespaces": ()}

    model_id: str = Field(description="Model identifier.", examples=["growth_80_20"])
    name: Optional[str] = Field(default=None, description="Display name.")
    sleeves: List[ModelSleeve] = Field(default_factory=list, description="Ordered sleeves.")

    @field_validator("sleeves")
    @classmethod
    def validate_unique_sleeve_ids(cls, sleeves: List[ModelSleeve]) -> List[ModelSleeve]:
        sleeve_ids = [sleeve.sleeve_id for sleeve in sleeves]
        if len(sleeve_ids) != len(set(sleeve_ids)):
            raise ValueError("sleeve_id values must be unique within a model")
        if any(sleeve_id in (CASH_SLEEVE_ID, ORPHAN_SLEEVE_ID) for sleeve_id in sleeve_ids):
            raise ValueError("sleeve_id values 'cash' and 'orphan-securities' are reserved")
        return sleeves


class WashSaleRestriction(BaseModel):
    ticker: str = Field(description="Restricted ticker.", examples=["VTI"])
    restricted_until: datetime = Field(description="Instant the restriction lapses.")
    sold_at: Optional[datetime] = Field(default=None, description="Loss sale instant.")
    loss_amount: Optional[Decimal] = Field(default=None, description="Realized loss amount.")
    source: Literal["STORED", "DERIVED"] = Field(
        default="STORED", description="Where the restriction came from."
    )

    @field_validator("restricted_until", "sold_at")
    @classmethod
    def normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return None if value is None else ensure_utc(value)


class Transaction(BaseModel):
    account_id: str = Field(description="Account of the executed trade.")
    ticker: str = Field(description="Traded ticker.")
    action: Literal["BUY", "SELL"] = Field(description="Executed side.")
    qty: Decimal = Field(ge=0, description="Executed quantity.")
    price: Decimal = Field(ge=0, description="Execution price.")
    executed_at: datetime = Field(description="Execution instant.")
    realized_gain: Optional[Decimal] = Field(
        default=None, description="Realized gain reported by the broker for sells."
    )
    account_type: AccountType = Field(default=AccountType.TAXABLE)

    @field_validator("executed_at")
    @classmethod
    def normalize_timezone(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class RebalanceGroupSnapshot(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "group_id": "grp_smith",
                "accounts": [{"account_id": "acc_taxable", "account_type": "TAXABLE"}],
                "holdings": [
                    {
                        "account_id": "acc_taxable",
                        "ticker": "VTI",
                        "qty": "100",
                        "cost_basis_per_share": "180",
                        "price": "250",
                    },
                    {"account_id": "acc_taxable", "ticker": "$$$", "qty": "5000"},
                ],
                "model": {
                    "model_id": "m1",
                    "sleeves": [
                        {
                            "sleeve_id": "us_equity",
                            "target_weight_bps": 10000,
                            "members": [{"ticker": "VTI", "rank": 1}],
                        }
                    ],
                },
            }
        }
    }

    group_id: str = Field(description="Rebalancing group identifier.", examples=["grp_smith"])
    name: Optional[str] = Field(default=None, description="Display name.")
    accounts: List[Account] = Field(default_factory=list, description="Accounts in the group.")
    holdings: List[Holding] = Field(default_factory=list, description="Lot-level holdings.")
    model: Optional[RebalanceModel] = Field(default=None, description="Assigned model.")
    prices: List[SecurityPrice] = Field(
        default_factory=list,
        description="Prices for securities the group may buy but does not hold.",
    )
    transactions: List[Transaction] = Field(
        default_factory=list,
        description="Recent executed trades used to derive wash-sale restrictions.",
    )
    restrictions: List[WashSaleRestriction] = Field(
        default_factory=list, description="Known wash-sale restrictions."
    )

    @model_validator(mode="after")
    def validate_unique_accounts(self) -> "RebalanceGroupSnapshot":
        account_ids = [account.account_id for account in self.accounts]
        if len(account_ids) != len(set(account_ids)):
            raise ValueError("account_id values must be unique within a group")
        return self


class RebalanceRequest(BaseModel):
    group_id: str = Field(description="Group to rebalance.", examples=["grp_smith"])
    method: RebalanceMethod = Field(description="Rebalance method.", examples=["allocation"])
    cash_amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Cash to deploy for investCash. Defaults to all available cash.",
        examples=["10000"],
    )
    allow_overinvestment: bool = Field(
        default=False,
        description="Allow sleeves to exceed target by max_overinvestment_pct.",
    )
    max_overinvestment_pct: Decimal = Field(
        default=Decimal("5.0"),
        ge=0,
        le=100,
        description="Per-sleeve overinvestment cap in percent of target.",
        examples=["5.0"],
    )


class TaxLot(BaseModel):
    qty: Decimal = Field(description="Lot quantity.")
    cost_basis_per_share: Decimal = Field(description="Per-share cost basis.")
    opened_at: Optional[date] = Field(default=None, description="Acquisition date.")


class AccountPosition(BaseModel):
    account_id: str = Field(description="Holding account.")
    account_type: AccountType = Field(description="Tax treatment of the account.")
    qty: Decimal = Field(description="Quantity held in the account.")
    cost_basis: Decimal = Field(description="Total cost basis in the account.")
    market_value: Decimal = Field(description="Market value in the account.")
    unrealized_gain: Decimal = Field(description="Market value minus cost basis.")
    lots: List[TaxLot] = Field(default_factory=list, description="Underlying lots.")

    @property
    def is_taxable(self) -> bool:
        return self.account_type == AccountType.TAXABLE


class RebalanceSecurityData(BaseModel):
    """Working row for one security inside one sleeve."""

    security_id: str = Field(description="Security ticker.")
    rank: int = Field(default=ORPHAN_RANK, description="Preference rank within the sleeve.")
    current_qty: Decimal = Field(default=Decimal("0"), description="Quantity across accounts.")
    target_pct: Decimal = Field(
        default=Decimal("0"), description="Target as a fraction of total portfolio value."
    )
    price: Decimal = Field(description="Representative market price.")
    price_defaulted: bool = Field(default=False, description="Price fell back to 1.0.")
    account_id: Optional[str] = Field(default=None, description="Representative account.")
    is_taxable: bool = Field(default=False, description="Held in any taxable account.")
    cost_basis: Decimal = Field(default=Decimal("0"), description="Total cost basis.")
    unrealized_gain: Decimal = Field(default=Decimal("0"), description="Total unrealized gain.")
    is_active: bool = Field(default=True)
    is_legacy: bool = Field(default=False)
    positions: List[AccountPosition] = Field(
        default_factory=list, description="Per-account breakdown."
    )

    @property
    def current_value(self) -> Decimal:
        return self.current_qty * self.price

    @property
    def is_buyable(self) -> bool:
        return self.is_active and not self.is_legacy


class CashPosition(BaseModel):
    base_cash: Decimal = Field(default=Decimal("0"), description="Brokerage cash ($$$).")
    manual_cash: Decimal = Field(default=Decimal("0"), description="Manual cash (MCASH).")
    by_account: Dict[str, Decimal] = Field(
        default_factory=dict, description="Cash value per account."
    )

    @property
    def total(self) -> Decimal:
        return self.base_cash + self.manual_cash

    @property
    def account_id(self) -> Optional[str]:
        if not self.by_account:
            return None
        return min(self.by_account.items(), key=lambda item: (-item[1], item[0]))[0]


class ModelSleeveState(BaseModel):
    kind: Literal["MODEL"] = Field(default="MODEL", description="Sleeve discriminator.")
    sleeve_id: str = Field(description="Sleeve identifier.")
    name: Optional[str] = Field(default=None)
    target_pct: Decimal = Field(description="Target fraction of total portfolio value.")
    target_value: Decimal = Field(description="Target dollar value.")
    current_value: Decimal = Field(description="Current dollar value.")
    securities: List[RebalanceSecurityData] = Field(default_factory=list)


class CashSleeveState(BaseModel):
    kind: Literal["CASH"] = Field(default="CASH", description="Sleeve discriminator.")
    sleeve_id: str = Field(default=CASH_SLEEVE_ID)
    name: Optional[str] = Field(default="Cash")
    target_pct: Decimal = Field(default=Decimal("0"))
    target_value: Decimal = Field(default=Decimal("0"))
    current_value: Decimal = Field(description="Cash dollar value.")
    cash: CashPosition = Field(description="Cash breakdown.")


class OrphanSleeveState(BaseModel):
    kind: Literal["ORPHAN"] = Field(default="ORPHAN", description="Sleeve discriminator.")
    sleeve_id: str = Field(default=ORPHAN_SLEEVE_ID)
    name: Optional[str] = Field(default="Orphan securities")
    target_pct: Decimal = Field(default=Decimal("0"))
    target_value: Decimal = Field(default=Decimal("0"))
    current_value: Decimal = Field(description="Value of securities outside the model.")
    securities: List[RebalanceSecurityData] = Field(default_factory=list)


SleeveState = Annotated[
    Union[ModelSleeveState, CashSleeveState, OrphanSleeveState],
    Field(discriminator="kind"),
]
TradableSleeve = Union[ModelSleeveState, OrphanSleeveState]


class TradeRationale(BaseModel):
    code: str = Field(description="Short rationale code for the trade.")
    message: str = Field(description="Human-readable rationale message.")


class Trade(BaseModel):
    account_id: str = Field(description="Account the trade executes in.")
    security_id: str = Field(description="Traded ticker, '$$$' for the cash row.")
    sleeve_id: Optional[str] = Field(default=None, description="Sleeve the trade belongs to.")
    action: Literal["BUY", "SELL"] = Field(description="Trade side.")
    qty: Decimal = Field(ge=0, description="Trade quantity.")
    est_price: Decimal = Field(description="Estimated execution price.")
    est_value: Decimal = Field(description="Signed estimated value, negative for sells.")
    can_execute: bool = Field(default=True, description="False when held back for review.")
    blocking_reason: Optional[str] = Field(default=None, description="Why it cannot execute.")
    rationale: Optional[TradeRationale] = Field(default=None)
    realized_gain: Optional[Decimal] = Field(default=None, description="Estimated realized gain.")
    long_term_gain: Optional[Decimal] = Field(default=None)
    short_term_gain: Optional[Decimal] = Field(default=None)


class BlockedSleeve(BaseModel):
    sleeve_id: str = Field(description="Sleeve whose demand could not be met.")
    reason_code: str = Field(description="Why no buy candidate was found.")
    restricted_tickers: List[str] = Field(default_factory=list)
    deferred_value: Decimal = Field(description="Unfilled dollar demand.")


class ScaledBuy(BaseModel):
    security_id: str = Field(description="Scaled ticker.")
    sleeve_id: str = Field(description="Sleeve of the scaled buy.")
    requested_qty: Decimal = Field(description="Quantity before scaling.")
    allowed_qty: Decimal = Field(description="Quantity after scaling.")
    reason_code: str = Field(description="Scaling reason.")


class SkippedSell(BaseModel):
    security_id: str = Field(description="Ticker left in place.")
    sleeve_id: str = Field(description="Sleeve of the ticker.")
    reason_code: str = Field(description="Why the sell was skipped.")


class DiagnosticsData(BaseModel):
    warnings: List[str] = Field(default_factory=list, description="Run-level warning codes.")
    blocked_sleeves: List[BlockedSleeve] = Field(
        default_factory=list,
        description="Sleeves that could not be bought into.",
    )
    scaled_buys: List[ScaledBuy] = Field(
        default_factory=list,
        description="Buys reduced to fit available cash.",
    )
    skipped_sells: List[SkippedSell] = Field(
        default_factory=list,
        description="Overweight positions deliberately left unsold.",
    )
    data_quality: Dict[str, List[str]] = Field(
        description="Data-quality issue buckets and affected keys."
    )


class PostHolding(BaseModel):
    security_id: str = Field(description="Ticker.")
    qty: Decimal = Field(description="Quantity after trades.")


class SleeveSummary(BaseModel):
    sleeve_id: str = Field(description="Sleeve identifier.")
    kind: Literal["MODEL", "CASH", "ORPHAN"] = Field(description="Sleeve kind.")
    target_value: Decimal = Field(description="Target dollar value.")
    current_value: Decimal = Field(description="Value before trades.")
    trade_qty: Decimal = Field(description="Signed quantity traded.")
    trade_value: Decimal = Field(description="Signed value traded.")
    post_trade_value: Decimal = Field(description="Value after trades.")
    post_trade_pct: Decimal = Field(description="Percent of post-trade total.")


class SleeveTableSecurityRow(BaseModel):
    ticker: str
    rank: int
    is_held: bool
    is_target: bool = Field(description="Security has a positive target.")
    qty: Decimal
    price: Decimal
    current_value: Decimal
    current_pct: Decimal
    target_value: Decimal
    target_pct: Decimal
    difference: Decimal = Field(description="Current minus target value.")
    difference_pct: Decimal = Field(description="Current minus target percent.")
    account_ids: List[str] = Field(default_factory=list)
    cost_basis: Decimal
    unrealized_gain: Decimal
    long_term_gain: Decimal
    short_term_gain: Decimal
    has_wash_sale_risk: bool
    wash_sale: Optional[WashSaleRestriction] = None


class SleeveTableRow(BaseModel):
    sleeve_id: str
    sleeve_name: Optional[str] = None
    kind: Literal["MODEL", "CASH", "ORPHAN"]
    current_value: Decimal
    current_pct: Decimal
    target_value: Decimal
    target_pct: Decimal
    difference: Decimal
    difference_pct: Decimal
    unrealized_gain: Decimal
    long_term_gain: Decimal
    short_term_gain: Decimal
    securities: List[SleeveTableSecurityRow] = Field(default_factory=list)


class CapitalGains(BaseModel):
    total: Decimal = Field(description="Realized gain in taxable accounts.")
    long_term: Decimal = Field(description="Long-term portion.")
    short_term: Decimal = Field(description="Short-term portion.")
    has_taxable_accounts: bool = Field(description="Any traded account is taxable.")


class RebalanceSummary(BaseModel):
    total_buy_amount: Decimal = Field(description="Buy value excluding cash rows.")
    total_sell_amount: Decimal = Field(description="Sell value excluding cash rows.")
    current_cash: Decimal = Field(description="Cash before trades.")
    cash_remaining: Decimal = Field(description="Cash plus sells minus buys.")
    capital_gains: CapitalGains
    post_trade_deviation: Decimal = Field(
        description="Sum of absolute post-trade dollar deviation across non-cash sleeves."
    )
    avg_deviation_pct: Decimal = Field(
        description="Mean absolute post-trade deviation in percent of sleeve target."
    )
    buy_count: int
    sell_count: int


class LineageData(BaseModel):
    model_config = {"protected_namespaces": ()}

    group_id: str = Field(description="Group used by run.")
    model_id: Optional[str] = Field(default=None, description="Model used by run.")
    request_hash: str = Field(description="Canonical request hash.")
    idempotency_key: Optional[str] = Field(default=None, description="Request idempotency key.")


class RebalanceResult(BaseModel):
    """The complete, auditable result of a rebalance run."""

    model_config = {
        "json_schema_extra": {
            "example": {
                "rebalance_run_id": "rb_1a2b3c4d5e6f",
                "group_id": "grp_smith",
                "method": "allocation",
                "status": "READY",
                "trades": [],
                "diagnostics": {"warnings": [], "data_quality": {"price_defaulted": []}},
            }
        }
    }

    rebalance_run_id: str = Field(description="Run identifier derived from the request hash.")
    group_id: str = Field(description="Rebalanced group.")
    method: RebalanceMethod = Field(description="Method used.")
    as_of: datetime = Field(description="Evaluation instant.")
    status: Literal["READY", "PARTIAL", "NO_ACTION"] = Field(
        description="Top-level outcome."
    )
    total_value: Decimal = Field(description="Portfolio value before trades.")
    trades: List[Trade] = Field(default_factory=list)
    post_holdings: List[PostHolding] = Field(default_factory=list)
    sleeve_summaries: List[SleeveSummary] = Field(default_factory=list)
    sleeve_table: List[SleeveTableRow] = Field(default_factory=list)
    summary: RebalanceSummary
    diagnostics: DiagnosticsData
    lineage: LineageData
