"""Wallet aggregation job orchestrator service."""
