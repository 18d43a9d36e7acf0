"""
Banned-keyword content classifier.

Matching is a plain case-insensitive substring test, so a banned word also
rejects any longer word containing it ("spam" rejects "spammy").  This is
the established moderation policy and is covered by tests.
"""
import enum
from collections.abc import Iterable


class Verdict(str, enum.Enum):
    ALLOW = "allow"
    REJECT = "reject"


def parse_banned_keywords(raw: str | None) -> list[str]:
    """Split the comma-separated ``BANNED_KEYWORDS`` setting into words."""
    if not raw:
        return []
    return [word for word in raw.split(",") if word.strip()]


def classify(content: str | None, banned_words: Iterable[str] | None) -> Verdict:
    """
    Return ``Verdict.REJECT`` if *content* contains any banned word.

    Each configured word is trimmed and lowercased; blank entries are
    ignored, so an empty configuration never rejects.
    """
    if not content or not banned_words:
        return Verdict.ALLOW

    text = content.lower()
    for word in banned_words:
        needle = word.strip().lower()
        if needle and needle in text:
            return Verdict.REJECT
    return Verdict.ALLOW
