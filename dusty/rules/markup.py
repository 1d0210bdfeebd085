"""Body markup handling."""

import html
import re

_TAG_RE = re.compile(r"<[^>]*>")


def strip_markup(text: str) -> str:
    """Remove markup tags and decode entities, e.g. ``<b>a &amp; b</b>`` -> ``a & b``."""
    return html.unescape(_TAG_RE.sub("", text))
