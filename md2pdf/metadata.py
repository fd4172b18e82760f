"""Author/affiliation block shown under the document title."""

import html
import re
from typing import Any, Dict, Optional

DEFAULT_LABELS = {
    "student_id": "Student ID: ",
    "author": "",
    "affiliation": "",
}

# Display order is fixed: identifier, author, affiliation
_FIELDS = (
    ("student_id", ("student_id", "identifier"), "meta-student-id"),
    ("author", ("author",), "meta-author"),
    ("affiliation", ("affiliation",), "meta-affiliation"),
)

_FIRST_H1_RE = re.compile(r'<h1\b[^>]*>.*?</h1\s*>', re.IGNORECASE | re.DOTALL)


def _field_value(front_matter: Dict[str, Any], keys) -> Optional[str]:
    for key in keys:
        value = front_matter.get(key)
        if value is None or value is False:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


def render_metadata_block(front_matter: Dict[str, Any], labels: Optional[Dict[str, str]] = None) -> str:
    """HTML for the recognized metadata fields, or "" when none is present."""
    labels = {**DEFAULT_LABELS, **(labels or {})}
    rows = []
    for name, keys, css_class in _FIELDS:
        value = _field_value(front_matter or {}, keys)
        if value is None:
            continue
        rows.append(f'    <div class="{css_class}">{html.escape(labels[name] + value)}</div>')

    if not rows:
        return ""
    return '\n<div class="document-meta">\n' + "\n".join(rows) + '\n</div>\n'


def insert_after_first_heading(fragment: str, block: str) -> str:
    """Insert block right after the first <h1>. Without an <h1> the block is dropped."""
    if not block:
        return fragment
    match = _FIRST_H1_RE.search(fragment)
    if match is None:
        return fragment
    return fragment[:match.end()] + block + fragment[match.end():]
