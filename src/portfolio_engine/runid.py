"""Utilities for computing deterministic request identifiers."""

from __future__ import annotations

import dataclasses
import hashlib
import json
from datetime import date
from enum import Enum
from typing import Any, Mapping, MutableMapping


def _default_serializer(value: Any) -> Any:
    """Conversion for the non-JSON-native values found in requests."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, "tolist"):
        return value.tolist()
    if hasattr(value, "item"):
        return value.item()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    return str(value)


def _normalize_payload(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    data: MutableMapping[str, Any] = dict(payload)
    data.pop("request_id", None)
    return data


def compute_request_id(kind: str, payload: Mapping[str, Any]) -> str:
    """Compute a stable hex digest for an analysis request.

    Parameters
    ----------
    kind:
        Request discriminator (``"optimize"``, ``"var"``...).
    payload:
        Mapping describing the request (any ``request_id`` key is ignored).
    """

    body = {"kind": kind, "payload": _normalize_payload(payload)}
    blob = json.dumps(body, sort_keys=True, separators=(",", ":"), default=_default_serializer)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()[:16]


__all__ = ["compute_request_id"]
