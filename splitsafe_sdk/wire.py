"""
Decoders for the ledger's wire conventions.

The ledger encodes an optional scalar as a zero-or-one-element sequence and a
variant as a single-key object (``{"approved": null}``). These helpers turn
both conventions into plain Python values and never raise: malformed input
decodes to a safe default so normalization can always proceed.
"""
import logging
import math
import operator
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping, Optional, Type, TypeVar

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

_SEQUENCE_TYPES = (list, tuple)


def unwrap_optional(value: Any) -> Any:
    """
    Decode the optional-as-sequence convention.

    Args:
        value: Wire value, usually ``[]`` or ``[x]``

    Returns:
        None for an empty sequence, the sole element of a one-element
        sequence, and any other value unchanged
    """
    if isinstance(value, _SEQUENCE_TYPES):
        if len(value) == 0:
            return None
        if len(value) == 1:
            return value[0]
    return value


def unwrap_status(tagged: Any, enum_type: Type[E]) -> E:
    """
    Map a tagged variant (or bare text) onto an enum member.

    Args:
        tagged: ``{"pending": None}``, ``"pending"``, an enum member, or junk
        enum_type: Enum with string values and an ``UNKNOWN`` member

    Returns:
        The matching member, or ``enum_type.UNKNOWN`` when nothing matches
    """
    if isinstance(tagged, enum_type):
        return tagged

    tagged = unwrap_optional(tagged)
    key: Optional[str] = None
    if isinstance(tagged, Mapping):
        if len(tagged) == 1:
            key = str(next(iter(tagged)))
    elif isinstance(tagged, Enum):
        key = str(tagged.value)
    elif isinstance(tagged, str):
        key = tagged

    if key is not None:
        wanted = key.strip().lower()
        for member in enum_type:
            if member.value == wanted:
                return member

    return enum_type["UNKNOWN"]


def to_int(value: Any) -> int:
    """
    Coerce an integer-like wire value without losing precision.

    Accepts ints, integral floats, decimal strings and objects supporting
    ``__index__``. One-element optional sequences are unwrapped first.

    Returns:
        The integer value, or 0 when the value is malformed
    """
    value = unwrap_optional(value)
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, Decimal):
        return int(value) if value.is_finite() else 0
    if isinstance(value, (str, bytes)):
        text = value.decode("ascii", "ignore") if isinstance(value, bytes) else value
        text = text.strip()
        if not text:
            return 0
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            return 0
        return int(parsed) if parsed.is_finite() else 0
    try:
        return operator.index(value)
    except TypeError:
        return 0


def to_timestamp(value: Any) -> Optional[int]:
    """
    Decode an optional nanosecond timestamp.

    Empty sequences, None, empty strings and zero all mean "not set".
    """
    value = unwrap_optional(value)
    if value is None or value == "":
        return None
    stamp = to_int(value)
    return stamp or None


def to_optional_text(value: Any) -> Optional[str]:
    """Decode an optional text field; empty text means absent."""
    value = unwrap_optional(value)
    if value is None:
        return None
    text = str(value)
    return text or None


def to_text(value: Any, default: str = "") -> str:
    """Decode a required text field."""
    value = unwrap_optional(value)
    if value is None:
        return default
    return str(value)


def field(raw: Any, *names: str, default: Any = None) -> Any:
    """
    Read the first present field from a mapping or attribute object.

    Args:
        raw: Wire record (dict-like or an object with attributes)
        names: Candidate field names, tried in order

    Returns:
        The first value found, or ``default``
    """
    for name in names:
        if isinstance(raw, Mapping):
            if name in raw:
                return raw[name]
        elif raw is not None and hasattr(raw, name):
            return getattr(raw, name)
    return default


def as_list(value: Any) -> list:
    """Return a list for a sequence-valued field, anything else becomes []."""
    if isinstance(value, _SEQUENCE_TYPES):
        return list(value)
    return []
