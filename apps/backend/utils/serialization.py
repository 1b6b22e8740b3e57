"""Convert ORM rows into JSON-ready dictionaries."""

import enum
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable


def to_json_value(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def row_to_dict(obj: Any, exclude: Iterable[str] = ()) -> Dict[str, Any]:
    """
    Map every table column of an ORM instance to a JSON-safe value.

    Column keys are used, so a column stored as "metadata" but mapped as
    "metadata_json" comes out under the attribute name.
    """
    skip = set(exclude)
    mapper = obj.__mapper__
    return {
        attr.key: to_json_value(getattr(obj, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in skip
    }
