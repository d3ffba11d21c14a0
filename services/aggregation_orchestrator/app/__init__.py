"""Aggregation orchestrator application package."""
