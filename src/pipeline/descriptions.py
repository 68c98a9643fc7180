"""Convert provider HTML job descriptions into the markdown stored on jobs."""

import re

from bs4 import BeautifulSoup
from markdownify import markdownify as md

_HTML_TAG = re.compile(r"</?[a-zA-Z][a-zA-Z0-9]*(?:\s[^<>]*)?/?>")
_BLANK_LINES = re.compile(r"\n{3,}")
_DROPPED_TAGS = ["script", "style"]


def looks_like_html(text: str) -> bool:
    return bool(_HTML_TAG.search(text))


def html_to_markdown(raw: str | None) -> str:
    """Convert HTML to markdown; plain text passes through (trimmed).

    Script and style elements are removed together with their contents.
    """
    if not raw:
        return ""
    if not looks_like_html(raw):
        return raw.strip()
    soup = BeautifulSoup(raw, "html.parser")
    for tag in soup.find_all(_DROPPED_TAGS):
        tag.decompose()
    text = md(str(soup), heading_style="ATX")
    return _BLANK_LINES.sub("\n\n", text).strip()
