import re
from typing import Iterable, Optional, Sequence

from occasion_notifier.config.settings import settings

DEFAULT_DISPLAY_NAME = "Devotee"

_WHITESPACE = re.compile(r"\s+")


def normalize_name(name: Optional[str]) -> str:
    """Lower-cased, whitespace-collapsed name used for identity matching."""
    return _WHITESPACE.sub(" ", str(name or "").strip()).lower()


def pick_display_name(initiation_name: Optional[str], name: Optional[str]) -> str:
    """Initiated name wins over the legal name; "Devotee" when both are blank."""
    return (
        str(initiation_name or "").strip()
        or str(name or "").strip()
        or DEFAULT_DISPLAY_NAME
    )


def gender_of(value: Optional[str]) -> Optional[str]:
    """Map free-form gender values to "male" / "female", or None."""
    g = str(value or "").strip().lower()
    if g in ("m", "male", "man"):
        return "male"
    if g in ("f", "female", "woman"):
        return "female"
    return None


def with_suffix(display_name: str, gender: Optional[str]) -> str:
    """Append the honorific for the member's gender unless already present."""
    suffix = {
        "male": settings.MALE_NAME_SUFFIX,
        "female": settings.FEMALE_NAME_SUFFIX,
    }.get(gender_of(gender) or "", "")
    if not suffix or display_name == DEFAULT_DISPLAY_NAME:
        return display_name
    if display_name.lower().endswith(" " + suffix.lower()):
        return display_name
    return f"{display_name} {suffix}"


def format_names(names: Iterable[str], limit: int = 8) -> str:
    """
    "A, B, C" or "A, B, ... H +N more" when more than ``limit`` names.

    Blank names are dropped before counting.
    """
    cleaned = [n for n in names if n]
    shown = cleaned[:limit]
    more = len(cleaned) - len(shown)
    if more > 0:
        return f"{', '.join(shown)} +{more} more"
    return ", ".join(shown)


def broadcast_body(names: Sequence[str], count: int, limit: int = 8) -> str:
    return f"({count}) {format_names(names, limit)}"


def festival_body(event: str, description: Optional[str]) -> str:
    description = str(description or "").strip()
    return f"{event} — {description}" if description else event
