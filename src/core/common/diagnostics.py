"""
Shared diagnostics builders for the rebalance engine.
"""

from src.core.models import DiagnosticsData

DATA_QUALITY_BUCKETS = ("price_defaulted", "unknown_accounts")


def make_empty_data_quality_log() -> dict[str, list[str]]:
    return {bucket: [] for bucket in DATA_QUALITY_BUCKETS}


def make_diagnostics_data() -> DiagnosticsData:
    return DiagnosticsData(
        warnings=[],
        blocked_sleeves=[],
        scaled_buys=[],
        skipped_sells=[],
        data_quality=make_empty_data_quality_log(),
    )


def record_data_quality(data_quality: dict[str, list[str]], bucket: str, key: str) -> None:
    keys = data_quality.setdefault(bucket, [])
    if key not in keys:
        keys.append(key)
