import re
from datetime import datetime, timezone

VIN_LENGTH = 17
VIN_CHARS = "[A-HJ-NPR-Z0-9]"
VIN_PATTERN = re.compile(f"{VIN_CHARS}{{{VIN_LENGTH}}}")


def is_valid_vin(code) -> bool:
    """
    Check a VIN against the 17 character alphabet (no I, O or Q).

    The check is case-sensitive; call normalize_vin first to accept lowercase input.
    """
    return isinstance(code, str) and VIN_PATTERN.fullmatch(code) is not None


def normalize_vin(code: str) -> str:
    return code.strip().upper()


def find_vin(text: str | None) -> str | None:
    """Return the leftmost VIN-shaped substring of text, if any."""
    if not text:
        return None
    match = VIN_PATTERN.search(text)
    return match.group(0) if match else None


def utcnow() -> datetime:
    return to_utc_naive(datetime.now(timezone.utc))


def to_utc_naive(value: datetime) -> datetime:
    # stored timestamps are naive UTC with whole seconds
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)
