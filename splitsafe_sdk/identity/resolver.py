"""
Identity resolution for ledger records.

The ledger is not consistent about how it sends identities: the same
principal may arrive as text, as an object with a text accessor, or as a raw
byte carrier such as ``{"_arr": [...], "_isPrincipal": True}``. Everything
funnels through :func:`decode_identity` so call sites never special-case.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple

from ..exceptions import DecodeError
from .principal import Principal

logger = logging.getLogger(__name__)

_TEXT_ACCESSORS = ("to_text", "toText")
_BYTE_CARRIER_KEY = "_arr"
_STRAY_CHARS = re.compile(r"[\[\]{}]")


@dataclass(frozen=True)
class IdentityResult:
    """
    Outcome of decoding a wire identity.

    Attributes:
        value: The resolved identity text (always set, possibly a fallback)
        error: Why the structured decode failed, or None on success
        strategy: Name of the strategy that produced ``value``
    """
    value: str
    error: Optional[DecodeError] = None
    strategy: str = "text"

    @property
    def ok(self) -> bool:
        return self.error is None


def _text_accessor(raw: Any) -> Optional[Callable[[], Any]]:
    for name in _TEXT_ACCESSORS:
        accessor = getattr(raw, name, None)
        if callable(accessor):
            return accessor
    return None


def _byte_values(raw: Any) -> Optional[List[int]]:
    """Extract the byte values from a raw byte carrier, or None if not one."""
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return list(bytes(raw))

    if isinstance(raw, Mapping):
        carrier = raw.get(_BYTE_CARRIER_KEY)
    else:
        carrier = getattr(raw, _BYTE_CARRIER_KEY, None)

    if carrier is None:
        return None
    if isinstance(carrier, (bytes, bytearray, memoryview)):
        return list(bytes(carrier))
    # A Uint8Array that went through JSON arrives as {"0": 12, "1": 7, ...}
    if isinstance(carrier, Mapping):
        try:
            ordered = sorted(carrier.items(), key=lambda item: int(item[0]))
        except (TypeError, ValueError):
            return None
        carrier = [value for _, value in ordered]
    if isinstance(carrier, (list, tuple)):
        return list(carrier)
    return None


def _from_bytes(values: List[int]) -> str:
    return Principal.from_bytes(values).to_text()


def _from_hex(values: List[int]) -> str:
    hex_text = "".join(format(int(b), "02x") for b in values)
    return Principal.from_hex(hex_text).to_text()


def _from_chars(values: List[int]) -> str:
    text = "".join(chr(int(b)) for b in values)
    return Principal.from_text(text).to_text()


_BYTE_STRATEGIES: Tuple[Tuple[str, Callable[[List[int]], str]], ...] = (
    ("bytes", _from_bytes),
    ("hex", _from_hex),
    ("chars", _from_chars),
)


def _fallback(raw: Any) -> str:
    if raw is None:
        return ""
    try:
        return str(raw).strip()
    except Exception:  # str() of a hostile object
        return repr(raw)


def decode_identity(raw: Any) -> IdentityResult:
    """
    Decode a wire identity into its canonical text.

    Strategies are attempted in order and the first success wins:

    1. plain string, stripped
    2. text accessor (``to_text()`` / ``toText()``), stripped
    3. raw byte carrier, reconstructed as principal bytes, then via hex,
       then by reading the bytes as principal text
    4. ``str(raw)``

    Args:
        raw: Identity as received from the ledger

    Returns:
        IdentityResult whose ``value`` is always a string; ``error`` is set
        when only the fallback succeeded
    """
    if isinstance(raw, str):
        return IdentityResult(raw.strip(), strategy="text")

    if isinstance(raw, Principal):
        return IdentityResult(raw.to_text(), strategy="principal")

    accessor = _text_accessor(raw)
    if accessor is not None:
        try:
            return IdentityResult(str(accessor()).strip(), strategy="accessor")
        except Exception as e:
            logger.debug(f"Identity text accessor failed: {e}")

    values = _byte_values(raw)
    if values is not None:
        last_error: Optional[Exception] = None
        for name, strategy in _BYTE_STRATEGIES:
            try:
                return IdentityResult(strategy(values).strip(), strategy=name)
            except (DecodeError, TypeError, ValueError, OverflowError) as e:
                last_error = e
        error = DecodeError(f"Could not reconstruct principal from bytes: {last_error}", raw=raw)
    elif raw is None:
        error = DecodeError("Identity is missing", raw=raw)
    else:
        error = DecodeError(f"Unrecognised identity encoding: {type(raw).__name__}", raw=raw)

    return IdentityResult(_fallback(raw), error=error, strategy="fallback")


def resolve(raw: Any) -> str:
    """
    Resolve any wire identity to a string. Never raises.

    Args:
        raw: Identity as received from the ledger

    Returns:
        Canonical identity text
    """
    return decode_identity(raw).value


def clean_identity(value: Any) -> str:
    """
    Resolve an identity and strip stray bracket or brace characters left
    behind by double-encoded values.
    """
    return _STRAY_CHARS.sub("", resolve(value)).strip()


def same_identity(left: Any, right: Any) -> bool:
    """Compare two wire identities by value."""
    if left is None or right is None:
        return False
    return clean_identity(left) == clean_identity(right)
