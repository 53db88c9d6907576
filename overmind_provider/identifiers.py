"""Conversions between the textual and wire forms of source identifiers."""

import uuid

from overmind_provider.exceptions import ValidationError

IDENTIFIER_BYTES = 16


def identifier_to_bytes(text: str) -> bytes:
    """Parse a textual identifier into its 16-byte wire form.

    Args:
        text: Identifier text, normally the hyphenated lowercase form.

    Returns:
        The raw 16 bytes of the identifier.

    Raises:
        ValidationError: If the text is not a valid 128-bit identifier.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValidationError(f"Invalid source ID {text!r}: identifier is empty")
    try:
        parsed = uuid.UUID(text.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid source ID {text!r}: {e}") from e
    return parsed.bytes


def identifier_from_bytes(raw: bytes) -> str:
    """Render a 16-byte wire identifier in canonical text form.

    Raises:
        ValidationError: If ``raw`` is not exactly 16 bytes.
    """
    if not isinstance(raw, bytes | bytearray) or len(raw) != IDENTIFIER_BYTES:
        length = len(raw) if isinstance(raw, bytes | bytearray) else None
        raise ValidationError(
            f"Failed to parse source UUID: expected {IDENTIFIER_BYTES} bytes, got {length}"
        )
    return str(uuid.UUID(bytes=bytes(raw)))


def canonical_identifier(text: str) -> str:
    """Normalize any accepted identifier spelling to the canonical form."""
    return identifier_from_bytes(identifier_to_bytes(text))
