import re
from datetime import datetime, timezone
from typing import Optional

_URL_RE = re.compile(r"https?://\S+")
_PUNCT_RE = re.compile(r"[^\w\s]")


def truncate(text: str, max_chars: int, suffix: str = "... [truncated]") -> str:
    if len(text) <= max_chars:
        return text
    return text[: max_chars - len(suffix)] + suffix


def clean_transcript_text(text: str) -> str:
    text = re.sub(r"\[.*?\]", "", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def extract_domain(url: str) -> str:
    match = re.search(r"https?://(?:www\.)?([^/]+)", url)
    return match.group(1) if match else url


def dedup_key(text: str) -> str:
    """
    Case/whitespace-normalized form used to spot near-identical items.
    Emoji-only or link-only texts keep their raw lowercased form, so only
    blank text yields an empty key.
    """
    lowered = re.sub(r"\s+", " ", text.lower()).strip()
    key = _PUNCT_RE.sub(" ", _URL_RE.sub(" ", lowered))
    return re.sub(r"\s+", " ", key).strip() or lowered


def parse_timestamp(value) -> Optional[datetime]:
    """Parse ISO strings, RFC 3339 'Z' strings and unix seconds into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
