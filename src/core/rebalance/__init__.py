"""Rebalance engine package."""

from src.core.rebalance.engine import prepare_group, request_fingerprint, run_rebalance

__all__ = ["prepare_group", "request_fingerprint", "run_rebalance"]
