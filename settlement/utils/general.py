"""JSON helpers for settlement documents."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Union

from pydantic import BaseModel

__all__ = ["JsonValue", "convert_to_json_safe", "dump_document"]

JsonValue = Union[None, str, int, float, bool, list["JsonValue"], dict[str, "JsonValue"]]


def convert_to_json_safe(data: object) -> JsonValue:
    """Recursively turn *data* into values ``json.dumps`` accepts.

    Money stays exact: ``Decimal`` becomes its string form.  Enum members
    collapse to their value, dates and datetimes to ISO strings, NaN and
    infinite floats to ``None``.  Pydantic models are dumped by alias so
    output keys match the camelCase input documents.
    """
    if data is None or isinstance(data, bool):
        return data
    # StrEnum / IntEnum members are also str / int instances.
    if isinstance(data, Enum):
        return convert_to_json_safe(data.value)
    if isinstance(data, (str, int)):
        return data
    if isinstance(data, Decimal):
        return str(data)
    if isinstance(data, float):
        return None if math.isnan(data) or math.isinf(data) else data
    if isinstance(data, date):
        return data.isoformat()
    if isinstance(data, BaseModel):
        return convert_to_json_safe(data.model_dump(by_alias=True))
    if isinstance(data, Mapping):
        return {str(key): convert_to_json_safe(value) for key, value in data.items()}
    if isinstance(data, (list, tuple, set, frozenset)):
        return [convert_to_json_safe(item) for item in data]
    return str(data)


def dump_document(data: object, indent: int | None = 2) -> str:
    return json.dumps(convert_to_json_safe(data), indent=indent, ensure_ascii=False)
