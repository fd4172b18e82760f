import pytest

import md2pdf.markdown_renderer as markdown_renderer
from md2pdf.console import ConsoleLogger
from md2pdf.markdown_renderer import MarkdownTransformer, extract_title


@pytest.fixture
def transformer():
    return MarkdownTransformer("mermaid", ConsoleLogger())


def test_diagram_fence_is_emitted_verbatim(transformer):
    html = transformer.render("```mermaid\ngraph TD\nA-->B\n```\n")

    assert '<div class="mermaid">\ngraph TD\nA-->B\n' in html
    assert "hljs" not in html


def test_diagram_keyword_is_case_insensitive(transformer):
    html = transformer.render("```Mermaid\nsequenceDiagram\n```\n")

    assert '<div class="mermaid">' in html


def test_known_language_is_highlighted(transformer):
    html = transformer.render("```python\ndef f(x):\n    return x < 1\n```\n")

    assert '<code class="hljs language-python" data-highlighted="yes">' in html
    assert "<span" in html
    assert "&lt;" in html


def test_unknown_language_falls_back_to_detection(transformer):
    html = transformer.render("```notalanguage\nplain words here\n```\n")

    assert 'class="hljs' in html
    assert "language-notalanguage" not in html


def test_highlighting_failure_keeps_escaped_code(transformer, monkeypatch, capsys):
    def boom(*args, **kwargs):
        raise RuntimeError("lexer exploded")

    monkeypatch.setattr(markdown_renderer, "highlight", boom)

    html = transformer.highlight_code("x < 1\n", "python")

    assert html == '<pre><code class="language-python">x &lt; 1\n</code></pre>\n'
    assert "[WARNING]" in capsys.readouterr().out


def test_inline_and_block_math_survive_as_text(transformer):
    html = transformer.render("Euler $e^{i\\pi}+1=0$ holds.\n\n$$\na_1 * b_2 * c_3\n$$\n")

    assert "$e^{i\\pi}+1=0$" in html
    assert '<div class="math-block">' in html
    assert "a_1 * b_2 * c_3" in html
    assert "<em>" not in html


def test_bracket_math_delimiters_are_kept(transformer):
    html = transformer.render("Inline \\(x_1 * y_1\\) and display \\[a_2 * b_2\\]\n")

    assert "\\(x_1 * y_1\\)" in html
    assert "\\[a_2 * b_2\\]" in html


def test_github_alert_becomes_container(transformer):
    html = transformer.render("> [!WARNING]\n> Back up first.\n")

    assert '<div class="markdown-alert markdown-alert-warning">' in html
    assert '<p class="markdown-alert-title">Warning</p>' in html
    assert "Back up first." in html
    assert "[!WARNING]" not in html
    assert "<blockquote>" not in html


def test_plain_blockquote_is_untouched(transformer):
    html = transformer.render("> just a quote\n")

    assert "<blockquote>" in html
    assert "markdown-alert" not in html


def test_gfm_features(transformer):
    html = transformer.render(
        "# Hello World\n\n"
        "| a | b |\n|---|---|\n| 1 | 2 |\n\n"
        "- [x] done\n- [ ] todo\n\n"
        "~~gone~~ see https://example.com\n"
    )

    assert '<h1 id="hello-world">' in html
    assert "<table>" in html
    assert 'type="checkbox"' in html
    assert "<s>gone</s>" in html
    assert '<a href="https://example.com">' in html


def test_raw_html_passes_through(transformer):
    html = transformer.render('<div class="page-break"></div>\n')

    assert '<div class="page-break"></div>' in html


@pytest.mark.parametrize("body,expected", [
    ("# Report\n\nText", "Report"),
    ("Intro\n\n## Sub\n\n# Real Title #\n", "Real Title"),
    ("Setext Title\n============\n", "Setext Title"),
    ("```\n# not a title\n```\n# After Fence\n", "After Fence"),
    ("# **Bold** $x$\n", "Bold x"),
    ("# [Guide](http://example.com) for `md2pdf`\n", "Guide for md2pdf"),
    ("*Setext* Title\n===\n", "Setext Title"),
])
def test_extract_title(body, expected):
    assert extract_title(body, "fallback") == expected


def test_extract_title_falls_back_to_humanized_name():
    assert extract_title("no headings here", "my_notes-v2") == "my notes v2"
