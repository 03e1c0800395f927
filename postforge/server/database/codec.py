# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Column encoding helpers shared by the repositories."""

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel


def _pydantic_encoder(obj: Any) -> Any:
    """Encode Pydantic models to JSON-serializable dictionaries.

    Args:
        obj: Object to encode, typically a Pydantic model.

    Returns:
        JSON-serializable dictionary representation of the object.

    Raises:
        TypeError: If object is not a Pydantic model or JSON serializable.
    """
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, datetime):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def encode_json(value: Any) -> str | None:
    """Serialize a JSON column value; None stays NULL."""
    if value is None:
        return None
    return json.dumps(value, default=_pydantic_encoder, ensure_ascii=False)


def decode_json(value: str | None) -> Any:
    """Deserialize a JSON column value; NULL becomes None."""
    if value is None:
        return None
    return json.loads(value)


def encode_timestamp(value: datetime | None) -> str | None:
    """Store timestamps as fixed-width UTC ISO strings so they sort lexically.

    Naive datetimes are assumed to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def decode_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
