"""Utility helpers shared across the Tensegrity package."""
from __future__ import annotations

import base64
import copy
from typing import Any, Dict


def deep_merge(base: Dict[str, Any], new: Dict[str, Any]) -> Dict[str, Any]:
    """Return a deep merge of ``base`` with ``new`` without mutating the inputs."""

    merged: Dict[str, Any] = copy.deepcopy(base)
    for key, value in new.items():
        if isinstance(value, dict):
            base_sub = merged.get(key, {})
            if not isinstance(base_sub, dict):
                merged[key] = copy.deepcopy(value)
            else:
                merged[key] = deep_merge(base_sub, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def b64encode(value: str | bytes) -> str:
    if isinstance(value, str):
        value = value.encode("utf-8")
    return base64.b64encode(value).decode("ascii")


def b64decode(value: str) -> str:
    return base64.b64decode(value).decode("utf-8")
