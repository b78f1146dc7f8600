"""Helpers for public UUID identifiers."""

from __future__ import annotations

import uuid

from ..errors import BusinessException, ErrorCode


def parse_uuid(value: str | None, field_name: str = "uuid") -> str:
    """Return `value` in canonical lowercase form or raise C007."""
    try:
        return str(uuid.UUID(str(value).strip()))
    except (TypeError, ValueError, AttributeError) as exc:
        raise (BusinessException(ErrorCode.INVALID_UUID_FORMAT, f"Invalid UUID format: {value}")
               .add_parameter("fieldName", field_name)
               .add_parameter("value", value)
               .with_cause(exc))
