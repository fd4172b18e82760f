"""
Layered configuration for the markdown to PDF converter.

Values are resolved once per run with the precedence
CLI overrides > environment variables > built-in defaults, and frozen into a
RenderConfiguration that is passed explicitly to every pipeline stage.
"""

import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigurationError

_MARGIN_RE = re.compile(r'^(-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)\s*(cm|in|mm|pt|px)?$')

PAPER_FORMATS = {
    "letter": "Letter", "legal": "Legal", "tabloid": "Tabloid", "ledger": "Ledger",
    "a0": "A0", "a1": "A1", "a2": "A2", "a3": "A3", "a4": "A4", "a5": "A5", "a6": "A6",
}

DEFAULT_FOOTER_TEXT = "GitHub Markdown CSS / highlight.js / MathJax / Mermaid / Playwright"


@dataclass(frozen=True)
class RenderConfiguration:
    """Every tunable of one conversion. Immutable once built."""

    # Typography and colors
    font_size: str = "14px"
    line_height: str = "1.6"
    padding_x: str = "32px"
    padding_y: str = "24px"
    code_font_scale: str = "1em"
    page_bg: str = "#fff"
    code_bg: str = "#f6f8fa"
    max_width: str = "auto"
    auto_number: bool = True
    template_path: Optional[str] = None

    # Behavior
    save_html: bool = False
    verbose: bool = False
    embed_assets: bool = True
    diagram_keyword: str = "mermaid"

    # Paper geometry
    pdf_format: str = "A4"
    pdf_scale: float = 1.0
    margin_top: str = "20mm"
    margin_right: str = "12mm"
    margin_bottom: str = "16mm"
    margin_left: str = "12mm"
    print_background: bool = True
    date_format: str = "%Y/%m/%d"
    footer_text: str = DEFAULT_FOOTER_TEXT

    # Limits and timeouts
    load_timeout_ms: int = 120000
    ready_timeout_ms: int = 30000
    typeset_timeout_ms: int = 60000
    pdf_timeout_ms: int = 120000
    convert_timeout_s: float = 60.0
    svg_inline_limit: int = 1024 * 1024
    html_file_threshold: int = 50 * 1024 * 1024

    @property
    def margins(self) -> Dict[str, str]:
        return {
            'top': self.margin_top,
            'right': self.margin_right,
            'bottom': self.margin_bottom,
            'left': self.margin_left,
        }


# Environment variable for each field. Fields not listed here can only be set
# from the command line.
ENV_VARS = {
    "font_size": "MD2HTML_FONT_SIZE",
    "line_height": "MD2HTML_LINE_HEIGHT",
    "padding_x": "MD2HTML_PADDING_X",
    "padding_y": "MD2HTML_PADDING_Y",
    "code_font_scale": "MD2HTML_CODE_FONT_SCALE",
    "page_bg": "MD2HTML_PAGE_BG",
    "code_bg": "MD2HTML_CODE_BG",
    "max_width": "MD2HTML_MAX_WIDTH",
    "auto_number": "MD2HTML_AUTO_NUMBER",
    "template_path": "MD2PDF_TEMPLATE",
    "save_html": "MD2PDF_SAVE_HTML",
    "verbose": "MD2PDF_VERBOSE",
    "embed_assets": "MD2PDF_EMBED",
    "pdf_format": "MD2PDF_FORMAT",
    "pdf_scale": "MD2PDF_SCALE",
    "margin_top": "MD2PDF_MARGIN_TOP",
    "margin_right": "MD2PDF_MARGIN_RIGHT",
    "margin_bottom": "MD2PDF_MARGIN_BOTTOM",
    "margin_left": "MD2PDF_MARGIN_LEFT",
    "print_background": "MD2PDF_PRINT_BG",
    "date_format": "MD2PDF_DATE_FORMAT",
    "footer_text": "MD2PDF_FOOTER_TEXT",
    "load_timeout_ms": "MD2PDF_LOAD_TIMEOUT",
    "ready_timeout_ms": "MD2PDF_READY_TIMEOUT",
    "typeset_timeout_ms": "MD2PDF_TYPESET_TIMEOUT",
    "pdf_timeout_ms": "MD2PDF_PDF_TIMEOUT",
    "convert_timeout_s": "MD2PDF_CONVERT_TIMEOUT",
    "svg_inline_limit": "MD2PDF_SVG_INLINE_LIMIT",
    "html_file_threshold": "MD2PDF_HTML_FILE_THRESHOLD",
}


def validate_margin(margin_str: str) -> str:
    """Validate and normalize a single margin value."""
    match = _MARGIN_RE.match(str(margin_str).strip())
    if not match:
        raise ConfigurationError(f"Invalid margin format: '{margin_str}'. Use format like '1in', '2.5cm', '10mm', etc.")

    value_str, unit = match.groups()
    value = float(value_str)

    # Set default unit to 'in' if not specified
    if not unit:
        unit = 'in'

    value_inches = margin_to_cm(f"{value}{unit}") / 2.54

    # Validate range: minimum 0 inches, maximum 3 inches
    if value_inches < 0:
        raise ConfigurationError(f"Margin cannot be negative: '{margin_str}'. Minimum value is 0.")
    elif value_inches > 3:
        raise ConfigurationError(f"Margin too large: '{margin_str}'. Maximum value is 3 inches (7.62cm).")

    return f"{value_str}{unit}"


def margin_to_cm(margin_str: str) -> float:
    """Convert margin string to centimeters for the PDF exporter."""
    match = _MARGIN_RE.match(margin_str.strip())
    if not match:
        return 2.54  # default 1 inch in cm

    value_str, unit = match.groups()
    value = float(value_str)

    if unit == 'cm':
        return value
    elif unit == 'mm':
        return value / 10
    elif unit == 'pt':
        return value * 0.0352778
    elif unit == 'px':
        return value * 0.0264583
    else:  # 'in' or unitless
        return value * 2.54


def parse_margins(page_margins: str) -> Dict[str, str]:
    """Parse a CSS-style margin shorthand (1, 2 or 4 values) into sides."""
    margin_parts = page_margins.split()

    if len(margin_parts) == 1:
        margin = validate_margin(margin_parts[0])
        return {'top': margin, 'right': margin, 'bottom': margin, 'left': margin}
    elif len(margin_parts) == 2:
        # Vertical and horizontal
        vertical = validate_margin(margin_parts[0])
        horizontal = validate_margin(margin_parts[1])
        return {'top': vertical, 'right': horizontal, 'bottom': vertical, 'left': horizontal}
    elif len(margin_parts) == 4:
        return {
            'top': validate_margin(margin_parts[0]),
            'right': validate_margin(margin_parts[1]),
            'bottom': validate_margin(margin_parts[2]),
            'left': validate_margin(margin_parts[3])
        }
    else:
        raise ConfigurationError(f"Invalid margin format: '{page_margins}'. Use 1, 2, or 4 values.")


def env_flag(value: str) -> bool:
    """Environment switches are on unless set to '0'."""
    return value.strip() != "0"


class Config:
    """Builds a RenderConfiguration from CLI overrides, the environment and defaults."""

    def __init__(self, cli_config: Optional[Dict[str, Any]] = None, environ: Optional[Mapping[str, str]] = None):
        self.cli_config = {k: v for k, v in (cli_config or {}).items() if v is not None}
        self.environ = os.environ if environ is None else environ
        unknown = set(self.cli_config) - {f.name for f in fields(RenderConfiguration)}
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    def _raw_value(self, name: str) -> Any:
        if name in self.cli_config:
            return self.cli_config[name]
        env_name = ENV_VARS.get(name)
        if env_name and env_name in self.environ:
            return self.environ[env_name]
        return None

    def build(self) -> RenderConfiguration:
        values: Dict[str, Any] = {}
        for field_def in fields(RenderConfiguration):
            raw = self._raw_value(field_def.name)
            if raw is None:
                continue
            values[field_def.name] = self._coerce(field_def.name, field_def.default, raw)

        for side in ('top', 'right', 'bottom', 'left'):
            key = f"margin_{side}"
            if key in values:
                values[key] = validate_margin(values[key])

        if "pdf_format" in values:
            fmt = PAPER_FORMATS.get(str(values["pdf_format"]).strip().lower())
            if fmt is None:
                raise ConfigurationError(
                    f"Unknown paper format '{values['pdf_format']}'. Available: {', '.join(PAPER_FORMATS.values())}"
                )
            values["pdf_format"] = fmt

        scale = values.get("pdf_scale", RenderConfiguration.pdf_scale)
        if not 0.1 <= scale <= 2.0:
            raise ConfigurationError(f"PDF scale must be between 0.1 and 2.0, got {scale}")

        if "template_path" in values:
            values["template_path"] = str(Path(values["template_path"]).expanduser())

        return RenderConfiguration(**values)

    @staticmethod
    def _coerce(name: str, default: Any, raw: Any) -> Any:
        if isinstance(default, bool):
            if isinstance(raw, bool):
                return raw
            return env_flag(str(raw))
        try:
            if isinstance(default, int):
                return int(raw)
            if isinstance(default, float):
                return float(raw)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid value for {name}: '{raw}' (expected a number)")
        return str(raw)


def load_config(cli_config: Optional[Dict[str, Any]] = None, environ: Optional[Mapping[str, str]] = None) -> RenderConfiguration:
    return Config(cli_config, environ).build()
