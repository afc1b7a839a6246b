"""Vector (de)serialization for the datastore's vector columns."""

from __future__ import annotations

import json
import math
from typing import Any


def vector_to_literal(vector: list[float]) -> str:
    """Serialize a vector as ``[v1,v2,...]``; non-finite values become 0."""
    return "[" + ",".join(repr(float(v)) if math.isfinite(v) else "0.0" for v in vector) + "]"


def parse_vector(value: Any) -> list[float] | None:
    """Parse a stored vector, or return None if it is not usable.

    Accepts a bracketed literal or an already decoded list. A usable vector
    is a non-empty sequence of finite numbers.
    """
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return None
    if not isinstance(value, list) or not value:
        return None

    vector = []
    for v in value:
        # bool is an int subclass but never a vector component
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            return None
        if not math.isfinite(v):
            return None
        vector.append(float(v))
    return vector
