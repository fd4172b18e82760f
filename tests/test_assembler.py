import pytest

from md2pdf.assembler import PACKAGED_TEMPLATE, DocumentAssembler, build_heading_number_css
from md2pdf.config import RenderConfiguration
from md2pdf.errors import ConfigurationError, TemplateNotFoundError


def test_heading_css_covers_h2_to_h6():
    css = build_heading_number_css(True)

    assert ".markdown-body { counter-reset: h2counter; }" in css
    for level in range(2, 7):
        assert f".markdown-body h{level}::before" in css
        assert f".markdown-body h{level}.no-number::before" in css
    assert 'content: counter(h2counter) "." counter(h3counter) ". "' in css
    assert "h1counter" not in css


def test_heading_css_empty_when_disabled():
    assert build_heading_number_css(False) == ""


def test_packaged_template_renders_document():
    config = RenderConfiguration(font_size="15px", code_bg="#eee")
    assembler = DocumentAssembler(config, search_paths=[PACKAGED_TEMPLATE])

    doc = assembler.assemble('<h1>T</h1><div class="mermaid">\nA-->B\n</div>', "T & Co", date_label="2024/01/02")

    assert doc.title == "T & Co"
    assert doc.date_label == "2024/01/02"
    assert "<title>T &amp; Co</title>" in doc.html
    assert '<div class="mermaid">\nA-->B\n</div>' in doc.html
    assert "--md-font-size: 15px;" in doc.html
    assert "--md-code-bg: #eee;" in doc.html
    assert "github-markdown" in doc.html
    assert "mathjax" in doc.html.lower()
    assert "mermaid.run" in doc.html
    assert "ignoreHtmlClass: 'mermaid'" in doc.html
    assert "counter-reset: h2counter" in doc.html


def test_front_matter_override_wins_over_config():
    assembler = DocumentAssembler(RenderConfiguration(auto_number=True), search_paths=[PACKAGED_TEMPLATE])

    assert "h2counter" not in assembler.assemble("<p>x</p>", "x", auto_number=False).html
    assert "h2counter" in assembler.assemble("<p>x</p>", "x", auto_number=None).html

    disabled = DocumentAssembler(RenderConfiguration(auto_number=False), search_paths=[PACKAGED_TEMPLATE])
    assert "h2counter" not in disabled.assemble("<p>x</p>", "x").html
    assert "h2counter" in disabled.assemble("<p>x</p>", "x", auto_number=True).html


def test_lookup_prefers_working_directory_template(tmp_path, monkeypatch):
    (tmp_path / "template.html").write_text("<html>{{ title }}|{{ body }}</html>", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    doc = DocumentAssembler(RenderConfiguration()).assemble("<p>b</p>", "Local")

    assert doc.html == "<html>Local|<p>b</p></html>"


def test_configured_template_path_comes_first(tmp_path, monkeypatch):
    custom = tmp_path / "custom.html"
    custom.write_text("custom:{{ font_size }}", encoding="utf-8")
    (tmp_path / "template.html").write_text("cwd", encoding="utf-8")
    monkeypatch.chdir(tmp_path)

    doc = DocumentAssembler(RenderConfiguration(template_path=str(custom))).assemble("", "t")

    assert doc.html == "custom:14px"


def test_missing_template_is_fatal(tmp_path):
    missing = [tmp_path / "a" / "template.html", tmp_path / "template.html"]
    assembler = DocumentAssembler(RenderConfiguration(), search_paths=missing)

    with pytest.raises(TemplateNotFoundError) as excinfo:
        assembler.assemble("<p>x</p>", "x")

    assert isinstance(excinfo.value, ConfigurationError)
    assert str(missing[0]) in str(excinfo.value)
    assert str(missing[1]) in str(excinfo.value)


def test_broken_template_is_reported(tmp_path):
    broken = tmp_path / "template.html"
    broken.write_text("{% if %}", encoding="utf-8")

    with pytest.raises(ConfigurationError, match="Invalid template"):
        DocumentAssembler(RenderConfiguration(), search_paths=[broken]).assemble("", "x")
