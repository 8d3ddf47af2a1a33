from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from src.core.models import (
    RebalanceGroupSnapshot,
    RebalanceMethod,
    RebalanceRequest,
    RebalanceSummary,
    Trade,
)


class SimulateRebalanceRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "snapshot": {
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
                },
                "request": {"group_id": "grp_smith", "method": "allocation"},
            }
        }
    }

    snapshot: RebalanceGroupSnapshot = Field(
        description="Group holdings, model, prices and wash-sale inputs."
    )
    request: RebalanceRequest = Field(description="Rebalance method and cash parameters.")
    as_of: Optional[datetime] = Field(
        default=None,
        description="Evaluation instant. Defaults to the current UTC time.",
    )


class GroupRebalanceRequest(BaseModel):
    method: RebalanceMethod = Field(description="Rebalance method.", examples=["tlhRebalance"])
    cash_amount: Optional[Decimal] = Field(
        default=None, ge=0, description="Cash to deploy for investCash."
    )
    allow_overinvestment: bool = Field(default=False)
    max_overinvestment_pct: Decimal = Field(default=Decimal("5.0"), ge=0, le=100)
    as_of: Optional[datetime] = Field(
        default=None,
        description="Evaluation instant. Defaults to the current UTC time.",
    )

    def to_rebalance_request(self, *, group_id: str) -> RebalanceRequest:
        return RebalanceRequest(
            group_id=group_id,
            method=self.method,
            cash_amount=self.cash_amount,
            allow_overinvestment=self.allow_overinvestment,
            max_overinvestment_pct=self.max_overinvestment_pct,
        )


class RebalanceSummaryRequest(BaseModel):
    snapshot: RebalanceGroupSnapshot = Field(description="Group the trades apply to.")
    trades: List[Trade] = Field(default_factory=list, description="Trades to summarize.")
    as_of: Optional[datetime] = Field(default=None)


class RebalanceGroupListResponse(BaseModel):
    group_ids: List[str] = Field(default_factory=list, description="Known rebalance groups.")


class RebalanceSummaryResponse(BaseModel):
    group_id: str
    summary: RebalanceSummary
