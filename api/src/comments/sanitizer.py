"""Comment content sanitization.

- Removes script and style blocks together with their content
- Drops every tag outside the allow list and strips attributes from the rest
- Escapes HTML-significant characters
- Extracts @mentions from the raw text
"""

import html
import re
from collections.abc import Iterable
from dataclasses import dataclass, field


SCRIPT_STYLE_PATTERN = re.compile(
    r"<\s*(script|style)\b[^>]*>.*?<\s*/\s*\1\s*>", re.IGNORECASE | re.DOTALL
)
TAG_PATTERN = re.compile(r"<\s*(/?)\s*([a-zA-Z][a-zA-Z0-9]*)\b[^>]*>")
MENTION_PATTERN = re.compile(r"@(\w+)", re.UNICODE)

DEFAULT_ALLOWED_TAGS = ("b", "i", "em", "strong", "code")


def extract_mentions(content: str) -> list[str]:
    """Extract @usernames, case preserved, first occurrence wins."""
    if not isinstance(content, str):
        return []
    return list(dict.fromkeys(MENTION_PATTERN.findall(content)))


@dataclass(frozen=True)
class SanitizedContent:
    """Result of sanitizing user supplied text."""

    sanitized: str = ""
    mentions: list[str] = field(default_factory=list)


class ContentSanitizer:
    """Makes comment text safe to render."""

    def __init__(self, allowed_tags: Iterable[str] = DEFAULT_ALLOWED_TAGS):
        self.allowed_tags = frozenset(tag.lower() for tag in allowed_tags)

    def sanitize(self, original: object) -> SanitizedContent:
        """Sanitize text and extract its mentions. Never raises."""
        if not isinstance(original, str):
            return SanitizedContent()
        return SanitizedContent(
            sanitized=self.clean(original),
            mentions=extract_mentions(original),
        )

    def clean(self, text: str) -> str:
        """Return escaped text where only bare allowed tags survive."""
        text = SCRIPT_STYLE_PATTERN.sub("", text)
        text = TAG_PATTERN.sub(self._normalize_tag, text)

        escaped = html.escape(text, quote=True)

        # Re-enable allowed tags (attributes were already stripped)
        for tag in self.allowed_tags:
            escaped = escaped.replace(f"&lt;{tag}&gt;", f"<{tag}>")
            escaped = escaped.replace(f"&lt;/{tag}&gt;", f"</{tag}>")

        return escaped.strip()

    def _normalize_tag(self, match: re.Match[str]) -> str:
        closing, name = match.group(1), match.group(2).lower()
        if name not in self.allowed_tags:
            return ""
        return f"<{closing}{name}>"
