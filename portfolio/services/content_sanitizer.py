import re
import threading

from bleach.css_sanitizer import CSSSanitizer
from bleach.sanitizer import Cleaner

ALLOWED_TAGS = frozenset(
    {
        "p",
        "br",
        "em",
        "strong",
        "i",
        "b",
        "u",
        "s",
        "mark",
        "ul",
        "ol",
        "li",
        "h1",
        "h2",
        "h3",
        "h4",
        "h5",
        "h6",
        "blockquote",
        "code",
        "pre",
        "img",
        "a",
        "div",
        "span",
    }
)

ALLOWED_ATTRIBUTES = {
    "a": ["href", "target", "rel"],
    "img": ["src", "alt"],
    "*": ["class", "style"],
}

ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto"})

# Elements whose body must go along with the tag
_EXECUTABLE_BLOCK_PATTERN = re.compile(
    r"<(script|style|iframe|object|embed|template|noscript)\b[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_TAG_PATTERN = re.compile(r"<[^>]*>")

# Cleaner holds parser state, so each thread gets its own
_local = threading.local()


def _get_cleaner() -> Cleaner:
    cleaner = getattr(_local, "cleaner", None)
    if cleaner is None:
        cleaner = _local.cleaner = Cleaner(
            tags=ALLOWED_TAGS,
            attributes=ALLOWED_ATTRIBUTES,
            protocols=ALLOWED_PROTOCOLS,
            strip=True,
            strip_comments=True,
            css_sanitizer=CSSSanitizer(),
        )
    return cleaner


def sanitize(raw_html: str) -> str:
    """
    Reduce user-authored HTML to the allow-listed tags and attributes.
    Anything not listed, data-* attributes included, is dropped.
    """
    if not raw_html:
        return ""
    without_blocks = _EXECUTABLE_BLOCK_PATTERN.sub("", raw_html)
    return _get_cleaner().clean(without_blocks)


def plain_text(raw_html: str) -> str:
    """Visible text of the sanitized markup, tags replaced by spaces."""
    return _TAG_PATTERN.sub(" ", sanitize(raw_html))
