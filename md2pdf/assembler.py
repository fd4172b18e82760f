"""
Full HTML document assembly.

The rendered body is dropped into a Jinja2 template together with the
typography settings and the optional heading-numbering stylesheet.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from jinja2 import Template, TemplateSyntaxError
from pygments.formatters import HtmlFormatter

from .config import RenderConfiguration
from .errors import ConfigurationError, TemplateNotFoundError

TEMPLATE_NAME = "template.html"
PACKAGED_TEMPLATE = Path(__file__).resolve().parent / "templates" / TEMPLATE_NAME

_NUMBERED_LEVELS = (2, 3, 4, 5, 6)


def build_heading_number_css(enabled: bool) -> str:
    """Counter rules numbering h2-h6 as 1., 1.1., ... Empty when disabled."""
    if not enabled:
        return ""

    lines = ["/* Automatic heading numbers (h2-h6). Add class no-number to opt a heading out. */",
             ".markdown-body { counter-reset: h2counter; }"]
    for level in _NUMBERED_LEVELS:
        reset = f" counter-reset: h{level + 1}counter;" if level < 6 else ""
        label = ' "." '.join(f"counter(h{n}counter)" for n in range(2, level + 1))
        lines.append(f".markdown-body h{level} {{ counter-increment: h{level}counter;{reset} }}")
        lines.append(f'.markdown-body h{level}::before {{ content: {label} ". "; }}')

    opt_out = ",\n".join(f".markdown-body h{level}.no-number::before" for level in _NUMBERED_LEVELS)
    lines.append(f"{opt_out} {{ content: none; }}")
    return "\n".join(lines)


@dataclass(frozen=True)
class AssembledDocument:
    html: str
    title: str
    date_label: str = ""


class DocumentAssembler:
    """Wraps an HTML fragment in the styling template."""

    def __init__(self, config: RenderConfiguration, search_paths: Optional[Sequence[Path]] = None):
        self.config = config
        self.search_paths = list(search_paths) if search_paths is not None else self._default_search_paths()
        self._template: Optional[Template] = None

    def _default_search_paths(self) -> List[Path]:
        paths = []
        if self.config.template_path:
            paths.append(Path(self.config.template_path))
        paths.append(Path.cwd() / TEMPLATE_NAME)
        paths.append(PACKAGED_TEMPLATE)
        return paths

    def locate_template(self) -> Path:
        for candidate in self.search_paths:
            if candidate.is_file():
                return candidate
        raise TemplateNotFoundError(
            f"{TEMPLATE_NAME} not found. Place it in the working directory or pass a template path.",
            [str(p) for p in self.search_paths],
        )

    def _load_template(self) -> Template:
        if self._template is None:
            path = self.locate_template()
            try:
                self._template = Template(path.read_text(encoding="utf-8"))
            except TemplateSyntaxError as e:
                raise ConfigurationError(f"Invalid template {path}: {e}")
            except (OSError, UnicodeDecodeError) as e:
                raise ConfigurationError(f"Cannot read template {path}: {e}")
        return self._template

    def assemble(self, body: str, title: str, auto_number: Optional[bool] = None,
                 date_label: str = "") -> AssembledDocument:
        numbering = self.config.auto_number if auto_number is None else auto_number
        cfg = self.config
        html = self._load_template().render(
            title=title,
            body=body,
            font_size=cfg.font_size,
            line_height=cfg.line_height,
            padding_x=cfg.padding_x,
            padding_y=cfg.padding_y,
            code_font_scale=cfg.code_font_scale,
            page_bg=cfg.page_bg,
            code_bg=cfg.code_bg,
            max_width=cfg.max_width,
            heading_number_css=build_heading_number_css(numbering),
            pygments_css=HtmlFormatter().get_style_defs(".markdown-body pre code.hljs"),
            date_label=date_label,
        )
        return AssembledDocument(html=html, title=title, date_label=date_label)
