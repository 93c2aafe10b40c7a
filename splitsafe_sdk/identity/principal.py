"""
Principal codec for ledger identities.

A principal is an opaque byte string of at most 29 bytes. Its textual form is
the lower-case base32 encoding of ``crc32(bytes) || bytes`` split into groups
of five characters joined by dashes (for example ``2vxsx-fae`` for the
anonymous principal ``b"\\x04"``).
"""
import base64
import logging
import zlib
from typing import Iterable, Union

from ..exceptions import DecodeError

logger = logging.getLogger(__name__)

MAX_PRINCIPAL_BYTES = 29
_GROUP = 5


class Principal:
    """An immutable ledger principal with value equality."""

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes):
        if len(raw) > MAX_PRINCIPAL_BYTES:
            raise DecodeError(
                f"Principal is {len(raw)} bytes, maximum is {MAX_PRINCIPAL_BYTES}",
                raw=raw,
            )
        self._raw = bytes(raw)

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, Iterable[int]]) -> "Principal":
        """
        Build a principal from raw bytes or a sequence of byte values.

        Raises:
            DecodeError: If any value is outside 0..255 or the length is invalid
        """
        if isinstance(data, (bytes, bytearray, memoryview)):
            return cls(bytes(data))
        try:
            return cls(bytes(list(data)))
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Invalid principal bytes: {e}", raw=data)

    @classmethod
    def from_hex(cls, text: str) -> "Principal":
        """
        Build a principal from its hex representation.

        Raises:
            DecodeError: If the text is not valid hex
        """
        if text.startswith("0x"):
            text = text[2:]
        try:
            return cls(bytes.fromhex(text))
        except ValueError as e:
            raise DecodeError(f"Invalid principal hex: {e}", raw=text)

    @classmethod
    def from_text(cls, text: str) -> "Principal":
        """
        Parse the dashed base32 textual form.

        Raises:
            DecodeError: If the text is malformed or its checksum does not match
        """
        compact = text.strip().replace("-", "").upper()
        if not compact:
            raise DecodeError("Empty principal text", raw=text)

        padding = "=" * (-len(compact) % 8)
        try:
            decoded = base64.b32decode(compact + padding)
        except ValueError as e:
            raise DecodeError(f"Invalid principal text: {e}", raw=text)

        if len(decoded) < 4:
            raise DecodeError("Principal text too short for checksum", raw=text)

        principal = cls(decoded[4:])
        # Re-encoding catches bad checksums and non-canonical grouping
        if principal.to_text() != text.strip().lower():
            raise DecodeError("Principal text is not in canonical form", raw=text)
        return principal

    def to_bytes(self) -> bytes:
        return self._raw

    def to_hex(self) -> str:
        return self._raw.hex()

    def to_text(self) -> str:
        """Return the canonical dashed base32 text."""
        checksum = zlib.crc32(self._raw).to_bytes(4, "big")
        encoded = base64.b32encode(checksum + self._raw).decode("ascii")
        encoded = encoded.rstrip("=").lower()
        groups = [encoded[i:i + _GROUP] for i in range(0, len(encoded), _GROUP)]
        return "-".join(groups)

    def __str__(self) -> str:
        return self.to_text()

    def __repr__(self) -> str:
        return f"Principal({self.to_text()!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Principal):
            return self._raw == other._raw
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._raw)
