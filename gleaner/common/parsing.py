"""Fail-closed parsers for locale-formatted fields.

Every parser here either returns a valid value or raises
RequiredFieldMissing. None of them fall back to a default.
"""

import re
from datetime import date, datetime

from gleaner.common.exceptions import RequiredFieldMissing

DEFAULT_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%d.%m.%Y",
    "%m/%d/%Y",
)

_SCORE_RE = re.compile(
    r"^\s*(?P<value>\d+(?:[.,]\d+)?)\s*(?:(?P<percent>%)|/\s*(?P<scale>\d+))?\s*$"
)


def parse_score(
    text: str | None,
    *,
    field_name: str = "score",
    scale: float = 10.0,
    request_url: str = "",
) -> float:
    """Parse a review score onto a 0..``scale`` range.

    Accepts ``8``, ``8.5``, ``8,5`` (decimal comma), ``85%`` and ``17/20``.
    Percentages and fractions are rescaled onto ``scale``.

    Raises:
        RequiredFieldMissing: If the text is missing, unparseable, or
            outside the scale.
    """
    if text is None:
        raise RequiredFieldMissing(field_name, request_url)

    match = _SCORE_RE.match(text)
    if match is None:
        raise RequiredFieldMissing(field_name, request_url, raw_value=text)

    value = float(match.group("value").replace(",", "."))
    if match.group("percent"):
        value = value / 100 * scale
    elif match.group("scale"):
        denominator = float(match.group("scale"))
        if denominator == 0:
            raise RequiredFieldMissing(field_name, request_url, raw_value=text)
        value = value / denominator * scale

    if not 0 <= value <= scale:
        raise RequiredFieldMissing(field_name, request_url, raw_value=text)
    return round(value, 2)


def parse_date(
    text: str | None,
    formats: tuple[str, ...] | list[str] = DEFAULT_DATE_FORMATS,
    *,
    field_name: str = "published",
    request_url: str = "",
) -> date:
    """Parse a publication date using the first matching format.

    ISO 8601 timestamps such as ``2024-03-01T10:00:00Z`` are accepted when
    no format matches; only their date is kept.

    Raises:
        RequiredFieldMissing: If no format matches.
    """
    if text is None or not text.strip():
        raise RequiredFieldMissing(field_name, request_url)

    cleaned = " ".join(text.split())
    for fmt in formats:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(cleaned).date()
    except ValueError:
        raise RequiredFieldMissing(
            field_name, request_url, raw_value=text
        ) from None


def require_text(
    text: str | None, field_name: str, request_url: str = ""
) -> str:
    """Return stripped text, raising RequiredFieldMissing when blank."""
    if text is None or not text.strip():
        raise RequiredFieldMissing(field_name, request_url)
    return text.strip()


def split_labels(text: str | None, separators: str = ",/|") -> list[str]:
    """Split a classifier string like ``"PC, PS5"`` into labels."""
    if not text:
        return []
    pattern = "[" + re.escape(separators) + "]"
    return [part.strip() for part in re.split(pattern, text) if part.strip()]
