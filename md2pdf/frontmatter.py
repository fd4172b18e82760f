"""
YAML front matter handling.

A document may start with a metadata block:

    ---
    author: Jane
    date: 2024-05-01
    ---
    # Title

The block is split off before markdown rendering. A malformed block is never
fatal: it is reported and the whole text is rendered as if it had no front
matter.
"""

import datetime
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from .console import ConsoleLogger
from .errors import InputError

_FRONT_MATTER_RE = re.compile(r'\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)', re.DOTALL)


@dataclass(frozen=True)
class Document:
    """One markdown source split into metadata and body."""

    source_path: Path
    raw_text: str
    front_matter: Dict[str, Any] = field(default_factory=dict)
    body: str = ""


def split_front_matter(text: str, logger: Optional[ConsoleLogger] = None) -> Tuple[Dict[str, Any], str]:
    """Return (metadata, body). Text without a leading block comes back unchanged."""
    match = _FRONT_MATTER_RE.match(text)
    if not match:
        return {}, text

    try:
        data = yaml.safe_load(match.group(1))
    except (yaml.YAMLError, ValueError, TypeError, OverflowError) as e:
        # Constructor errors (e.g. date: 2024-02-30) are not YAMLError subclasses
        _warn(logger, f"Failed to parse YAML front matter: {e}")
        return {}, text

    if data is None:
        data = {}
    if not isinstance(data, dict):
        _warn(logger, f"Front matter must be a mapping, got {type(data).__name__}; ignoring it")
        return {}, text

    return data, text[match.end():]


def _warn(logger: Optional[ConsoleLogger], message: str) -> None:
    (logger or ConsoleLogger()).warning(message)


def load_document(md_file: Path, logger: Optional[ConsoleLogger] = None) -> Document:
    """Read a markdown file and split its front matter."""
    md_file = Path(md_file)
    try:
        with open(md_file, 'r', encoding='utf-8') as f:
            raw_text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise InputError(f"Cannot read markdown file {md_file}: {e}")

    front_matter, body = split_front_matter(raw_text, logger)
    return Document(source_path=md_file.resolve(), raw_text=raw_text, front_matter=front_matter, body=body)


def resolve_auto_number(front_matter: Dict[str, Any]) -> Optional[bool]:
    """Numbering override from front matter: None when unset.

    Boolean false and the string "false" switch numbering off; any other
    value switches it on.
    """
    if "auto_number" not in front_matter:
        return None
    value = front_matter["auto_number"]
    if value is False:
        return False
    if isinstance(value, str) and value.strip().lower() == "false":
        return False
    return True


def _parse_date(value: Any) -> Optional[datetime.date]:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def resolve_date_label(front_matter: Dict[str, Any], date_format: str = "%Y/%m/%d",
                       today: Optional[datetime.date] = None) -> str:
    """Date shown in the page header: front matter date, else today."""
    parsed = _parse_date(front_matter.get("date")) if front_matter.get("date") is not None else None
    if parsed is None:
        parsed = today or datetime.date.today()
    return parsed.strftime(date_format)
