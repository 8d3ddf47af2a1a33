SIMULATE_READY_EXAMPLE = {
    "summary": "Ready run",
    "value": {
        "status": "READY",
        "rebalance_run_id": "rb_1a2b3c4d5e6f",
        "group_id": "grp_smith",
        "method": "allocation",
        "diagnostics": {"warnings": [], "data_quality": {"price_defaulted": []}},
    },
}
SIMULATE_PARTIAL_EXAMPLE = {
    "summary": "Partial run with a wash-sale blocked sleeve",
    "value": {
        "status": "PARTIAL",
        "rebalance_run_id": "rb_9f8e7d6c5b4a",
        "group_id": "grp_smith",
        "method": "allocation",
        "diagnostics": {
            "warnings": ["SLEEVE_BUY_BLOCKED_intl_equity"],
            "blocked_sleeves": [
                {
                    "sleeve_id": "intl_equity",
                    "reason_code": "WASH_SALE_RESTRICTED",
                    "restricted_tickers": ["VXUS"],
                    "deferred_value": "5000",
                }
            ],
        },
    },
}
SIMULATE_NO_ACTION_EXAMPLE = {
    "summary": "Group already on target",
    "value": {"status": "NO_ACTION", "rebalance_run_id": "rb_000000000000", "trades": []},
}
SIMULATE_409_EXAMPLE = {
    "summary": "Idempotency hash conflict",
    "value": {"detail": "IDEMPOTENCY_KEY_CONFLICT: request hash mismatch"},
}
GROUP_NOT_FOUND_EXAMPLE = {
    "summary": "Unknown group",
    "value": {"detail": "REBALANCE_GROUP_NOT_FOUND"},
}
CONFIGURATION_ERROR_EXAMPLE = {
    "summary": "Group cannot be rebalanced",
    "value": {"detail": "NO_MODEL_ASSIGNED: group grp_smith has no model assigned"},
}
