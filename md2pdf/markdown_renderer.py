"""
Markdown to HTML fragment rendering.

Uses markdown-it-py with a GFM-like rule set. Fenced code is highlighted with
Pygments, except diagram fences which are emitted verbatim for Mermaid to
render in the browser. Math is left as literal text for MathJax.
"""

import re
from typing import Optional

from markdown_it import MarkdownIt
from markdown_it.common.utils import escapeHtml
from markdown_it.rules_inline import StateInline
from mdit_py_plugins.anchors import anchors_plugin
from mdit_py_plugins.dollarmath import dollarmath_plugin
from mdit_py_plugins.tasklists import tasklists_plugin
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name, guess_lexer
from pygments.lexers.special import TextLexer
from pygments.util import ClassNotFound

from .console import ConsoleLogger

ALERT_TYPES = {
    "note": "Note",
    "tip": "Tip",
    "important": "Important",
    "warning": "Warning",
    "caution": "Caution",
}

_ALERT_MARKER_RE = re.compile(r'^\[!(NOTE|TIP|IMPORTANT|WARNING|CAUTION)\]\s*$', re.IGNORECASE)


def _bracket_math_rule(state: StateInline, silent: bool) -> bool:
    r"""Keep \( ... \) and \[ ... \] intact so MathJax sees the delimiters."""
    src = state.src
    pos = state.pos
    if src[pos] != "\\" or pos + 1 >= state.posMax:
        return False
    opener = src[pos + 1]
    if opener not in "([":
        return False
    closer = "\\)" if opener == "(" else "\\]"
    end = src.find(closer, pos + 2)
    if end == -1 or end + 2 > state.posMax:
        return False
    if not silent:
        token = state.push("math_bracket", "", 0)
        token.content = src[pos:end + 2]
    state.pos = end + 2
    return True


def _github_alerts_rule(state) -> None:
    """Turn `> [!NOTE]` style blockquotes into alert containers."""
    tokens = state.tokens
    open_stack = []
    for idx, token in enumerate(tokens):
        if token.type == "blockquote_open":
            open_stack.append(idx)
            if idx + 2 >= len(tokens) or tokens[idx + 1].type != "paragraph_open":
                continue
            inline = tokens[idx + 2]
            if inline.type != "inline" or not inline.children:
                continue
            first = inline.children[0]
            match = _ALERT_MARKER_RE.match(first.content) if first.type == "text" else None
            if not match:
                continue
            kind = match.group(1).lower()
            token.meta["alert"] = kind

            # Drop the marker and the line break that follows it
            children = inline.children[1:]
            if children and children[0].type in ("softbreak", "hardbreak"):
                children = children[1:]
            inline.children = children
            inline.content = inline.content.split("\n", 1)[1] if "\n" in inline.content else ""
            if not children:
                tokens[idx + 1].hidden = True
                tokens[idx + 3].hidden = True
        elif token.type == "blockquote_close" and open_stack:
            opener = tokens[open_stack.pop()]
            kind = opener.meta.get("alert")
            if kind:
                token.meta["alert"] = kind


class MarkdownTransformer:
    """Render markdown body text to an HTML fragment."""

    def __init__(self, diagram_keyword: str = "mermaid", logger: Optional[ConsoleLogger] = None):
        self.diagram_keyword = diagram_keyword.strip().lower()
        self.logger = logger or ConsoleLogger()
        self.formatter = HtmlFormatter(nowrap=True)
        self._md = self._build_parser()

    def _build_parser(self) -> MarkdownIt:
        md = MarkdownIt(
            "gfm-like",
            {"html": True, "linkify": True, "typographer": True, "breaks": True},
        ).enable(["replacements", "smartquotes"])
        md.use(anchors_plugin, min_level=1, max_level=6, permalink=False)
        # Math is tokenized before emphasis rules run so TeX survives intact,
        # then written back out as plain text.
        md.use(dollarmath_plugin, allow_labels=False, double_inline=True)
        md.use(tasklists_plugin)
        md.inline.ruler.before("escape", "math_bracket", _bracket_math_rule)
        md.core.ruler.push("github_alerts", _github_alerts_rule)

        default_blockquote_open = md.renderer.rules.get("blockquote_open")
        default_render_token = md.renderer.renderToken

        def fence(tokens, idx, options, env):
            token = tokens[idx]
            info = token.info.strip().split(maxsplit=1)[0] if token.info.strip() else ""
            if info.lower() == self.diagram_keyword:
                return f'<div class="mermaid">\n{token.content}\n</div>\n'
            return self.highlight_code(token.content, info)

        def math_inline(tokens, idx, options, env):
            return f"${escapeHtml(tokens[idx].content)}$"

        def math_inline_double(tokens, idx, options, env):
            return f"$${escapeHtml(tokens[idx].content)}$$"

        def math_block(tokens, idx, options, env):
            body = tokens[idx].content.strip("\n")
            return f'<div class="math-block">$$\n{escapeHtml(body)}\n$$</div>\n'

        def math_bracket(tokens, idx, options, env):
            return escapeHtml(tokens[idx].content)

        def blockquote_open(tokens, idx, options, env):
            kind = tokens[idx].meta.get("alert")
            if not kind:
                if default_blockquote_open:
                    return default_blockquote_open(tokens, idx, options, env)
                return default_render_token(tokens, idx, options, env)
            return (
                f'<div class="markdown-alert markdown-alert-{kind}">\n'
                f'<p class="markdown-alert-title">{ALERT_TYPES[kind]}</p>\n'
            )

        def blockquote_close(tokens, idx, options, env):
            if tokens[idx].meta.get("alert"):
                return "</div>\n"
            return default_render_token(tokens, idx, options, env)

        md.renderer.rules["fence"] = fence
        md.renderer.rules["math_inline"] = math_inline
        md.renderer.rules["math_inline_double"] = math_inline_double
        md.renderer.rules["math_block"] = math_block
        md.renderer.rules["math_bracket"] = math_bracket
        md.renderer.rules["blockquote_open"] = blockquote_open
        md.renderer.rules["blockquote_close"] = blockquote_close
        return md

    def highlight_code(self, code: str, lang: str) -> str:
        """Highlight one code block. Never raises; falls back to escaped text."""
        if not code.strip():
            class_attr = f' class="language-{escapeHtml(lang)}"' if lang else ""
            return f'<pre><code{class_attr}>{escapeHtml(code)}</code></pre>\n'

        detected = lang
        try:
            lexer = None
            if lang:
                try:
                    lexer = get_lexer_by_name(lang, stripnl=False)
                except ClassNotFound:
                    self.logger.debug(f"Unknown code language '{lang}', guessing")
            if lexer is None:
                lexer = guess_lexer(code, stripnl=False)
                detected = "" if isinstance(lexer, TextLexer) else lexer.aliases[0] if lexer.aliases else ""
            highlighted = highlight(code, lexer, self.formatter)
        except Exception as e:
            self.logger.warning(f"Syntax highlighting failed ({lang or 'auto'}): {e}")
            class_attr = f' class="language-{escapeHtml(lang)}"' if lang else ""
            return f'<pre><code{class_attr}>{escapeHtml(code)}</code></pre>\n'

        classes = "hljs" + (f" language-{escapeHtml(detected)}" if detected else "")
        # data-highlighted stops highlight.js from re-highlighting in the browser
        return f'<pre><code class="{classes}" data-highlighted="yes">{highlighted}</code></pre>\n'

    def render(self, body: str) -> str:
        return self._md.render(body)


_TITLE_PARSER = MarkdownIt("commonmark").use(dollarmath_plugin, allow_labels=False, double_inline=True)
_TITLE_TEXT_TOKENS = ("text", "code_inline", "math_inline", "math_inline_double", "image")


def _heading_plain_text(source: str) -> str:
    """Visible text of a heading line: emphasis, links, code and math markers removed."""
    parts = []
    for token in _TITLE_PARSER.parseInline(source):
        for child in token.children or []:
            if child.type in _TITLE_TEXT_TOKENS:
                parts.append(child.content)
            elif child.type in ("softbreak", "hardbreak"):
                parts.append(" ")
    return " ".join("".join(parts).split())


def extract_title(body: str, fallback: str) -> str:
    """Document title: first ATX or Setext H1 heading, else a humanized name."""
    in_fence = False
    lines = body.splitlines()
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("```") or stripped.startswith("~~~"):
            in_fence = not in_fence
            continue
        if in_fence:
            continue
        if stripped.startswith('# '):
            heading_text = _heading_plain_text(stripped[2:].strip().rstrip('#').strip())
            if heading_text:
                return heading_text
        if stripped and i + 1 < len(lines) and re.fullmatch(r"=+", lines[i + 1].strip()):
            heading_text = _heading_plain_text(stripped)
            if heading_text:
                return heading_text

    stem = fallback.replace('_', ' ').replace('-', ' ').strip()
    return stem if stem else fallback
