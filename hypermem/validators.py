"""
Shared validation helpers for hypermem services.
"""

from __future__ import annotations

import json
import math
from typing import Optional, Sequence

from hypermem.config import MAX_METADATA_BYTES, URGENCY_CEILING
from hypermem.errors import ValidationIssue
from hypermem.models import NodeType

NODE_TYPES = {item.value for item in NodeType}


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_limit(value: int, field: str, max_value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_list(values: Optional[Sequence], field: str, max_items: int) -> None:
    if values is None:
        return
    if not isinstance(values, (list, tuple)):
        raise ValidationIssue(f"{field} must be a list", field=field, error_type="invalid_type")
    if len(values) > max_items:
        raise ValidationIssue(f"{field} exceeds max items {max_items}", field=field, error_type="max_items")


def validate_string_list(
    values: Optional[Sequence[str]],
    field: str,
    max_items: int,
    max_item_length: int,
) -> None:
    if values is None:
        return
    validate_list(values, field, max_items)
    for item in values:
        if not isinstance(item, str):
            raise ValidationIssue(f"{field} must contain only strings", field=field, error_type="invalid_type")
        if len(item) > max_item_length:
            raise ValidationIssue(
                f"{field} item exceeds max length {max_item_length}",
                field=field,
                error_type="max_length",
            )


def validate_metadata(metadata: Optional[dict], field: str) -> None:
    if metadata is None:
        return
    if not isinstance(metadata, dict):
        raise ValidationIssue(f"{field} must be an object", field=field, error_type="invalid_type")
    try:
        size = len(json.dumps(metadata))
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type") from exc
    if size > MAX_METADATA_BYTES:
        raise ValidationIssue(
            f"{field} exceeds max size {MAX_METADATA_BYTES} bytes",
            field=field,
            error_type="max_bytes",
        )


def validate_node_type(value: str, field: str = "type") -> None:
    if value not in NODE_TYPES:
        raise ValidationIssue(
            f"{field} must be one of: {', '.join(sorted(NODE_TYPES))}",
            field=field,
            error_type="invalid_value",
        )


def validate_number(
    value,
    field: str,
    min_value: float = 0.0,
    max_value: Optional[float] = None,
) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationIssue(f"{field} must be a number", field=field, error_type="invalid_type")
    if not math.isfinite(value):
        raise ValidationIssue(f"{field} must be a finite number", field=field, error_type="invalid_value")
    if value < min_value or (max_value is not None and value > max_value):
        upper = "inf" if max_value is None else max_value
        raise ValidationIssue(
            f"{field} must be between {min_value} and {upper}",
            field=field,
            error_type="out_of_range",
        )


def validate_importance(value, field: str = "importance") -> None:
    validate_number(value, field, 0.0, URGENCY_CEILING)
