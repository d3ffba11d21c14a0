"""Helpers for deterministic identifier generation across aggregation services."""

from __future__ import annotations

import uuid
from typing import Any

INTEGRATION_REQUEST_NAMESPACE = uuid.uuid5(
    uuid.NAMESPACE_URL, "https://walletagg.dev/namespaces/integration/request"
)


def _normalize_component(component: Any) -> str:
    """Convert a component to a normalized string suitable for UUID generation."""
    if component is None:
        return ""

    if isinstance(component, (bytes, bytearray)):
        try:
            component = component.decode("utf-8")
        except UnicodeDecodeError:
            component = component.hex()

    value = str(component).strip()
    return value


def deterministic_uuid(namespace: uuid.UUID, *components: Any) -> str:
    """
    Generate a deterministic UUIDv5 string for the provided components.

    Empty or None components are ignored. If all components are empty the
    function falls back to a sentinel value to keep behaviour deterministic.
    """
    normalized_parts = []
    for component in components:
        value = _normalize_component(component)
        if value:
            normalized_parts.append(value)

    if not normalized_parts:
        normalized_parts.append("__empty__")

    payload = "::".join(normalized_parts)
    return str(uuid.uuid5(namespace, payload))


def new_job_id() -> str:
    """Return a fresh random job identifier."""
    return str(uuid.uuid4())


__all__ = [
    "INTEGRATION_REQUEST_NAMESPACE",
    "deterministic_uuid",
    "new_job_id",
]
