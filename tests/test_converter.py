from pathlib import Path

import pytest

import md2pdf.converter as converter_module
from md2pdf.assets import TEMP_DIR_NAME
from md2pdf.config import RenderConfiguration
from md2pdf.console import ConsoleLogger
from md2pdf.converter import MarkdownToPDFConverter, main
from md2pdf.errors import InputError
from md2pdf.renderer import RenderDriver

FULL_DOCUMENT = """---
author: Jane Doe
student_id: S-42
affiliation: Physics Lab
date: 2024-05-01
auto_number: false
---
# Lab Report

## Setup

```mermaid
graph TD
A-->B
```

![chart](chart.png)

Energy is $E = mc^2$.
"""


def _write_test_png(path: Path) -> None:
    from PIL import Image

    Image.new("RGB", (3, 3), color=(0, 120, 200)).save(path, format="PNG")


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def fake_render(monkeypatch):
    """Replace the browser step, recording how it was called."""
    calls = []

    async def render_pdf(self, output_pdf, date_label, html=None, html_path=None):
        staged = Path(html_path).exists() if html_path is not None else None
        calls.append({"output": Path(output_pdf), "date_label": date_label, "html": html,
                      "html_path": html_path, "staged_exists": staged})
        Path(output_pdf).parent.mkdir(parents=True, exist_ok=True)
        Path(output_pdf).write_bytes(b"%PDF-1.4\n")
        return Path(output_pdf)

    monkeypatch.setattr(RenderDriver, "render_pdf", render_pdf)
    return calls


def _converter(**overrides) -> MarkdownToPDFConverter:
    return MarkdownToPDFConverter(RenderConfiguration(**overrides), ConsoleLogger())


def test_build_html_runs_every_stage(workspace):
    md_file = workspace / "report.md"
    md_file.write_text(FULL_DOCUMENT, encoding="utf-8")
    _write_test_png(workspace / "chart.png")

    doc = _converter().build_html(md_file)

    assert doc.title == "Lab Report"
    assert doc.date_label == "2024/05/01"
    html = doc.html
    heading_end = html.index("</h1>")
    meta_start = html.index('<div class="document-meta">')
    assert heading_end < meta_start < html.index("<h2")
    assert "Student ID: S-42" in html
    assert "Jane Doe" in html
    assert "Physics Lab" in html
    assert '<div class="mermaid">\ngraph TD\nA-->B\n' in html
    assert 'src="data:image/png;base64,' in html
    assert "$E = mc^2$" in html
    # auto_number: false in front matter
    assert "h2counter" not in html
    assert "author:" not in html


def test_document_without_h1_uses_file_name(workspace):
    md_file = workspace / "meeting_notes.md"
    md_file.write_text("---\nauthor: Sam\n---\n## Agenda\n\nText\n", encoding="utf-8")

    doc = _converter().build_html(md_file)

    assert doc.title == "meeting notes"
    assert '<div class="document-meta">' not in doc.html
    assert "counter-reset: h2counter" in doc.html


def test_malformed_front_matter_still_converts(workspace, capsys):
    md_file = workspace / "broken.md"
    md_file.write_text("---\nauthor: [oops\n---\n# Broken\n", encoding="utf-8")

    doc = _converter().build_html(md_file)

    assert "[WARNING]" in capsys.readouterr().out
    assert doc.title == "Broken"
    assert "<hr" in doc.html


def test_missing_markdown_file_is_an_input_error(workspace):
    with pytest.raises(InputError):
        _converter().build_html(workspace / "absent.md")


def test_convert_writes_default_pdf_path(workspace, fake_render):
    md_file = workspace / "doc.md"
    md_file.write_text("# Doc\n\nHello\n", encoding="utf-8")

    output = _converter().convert(md_file)

    assert output == Path("out-pdf") / "doc.pdf"
    assert (workspace / "out-pdf" / "doc.pdf").exists()
    assert len(fake_render) == 1
    call = fake_render[0]
    assert call["html_path"] is None
    assert "<h1" in call["html"]
    assert not (workspace / "out-html").exists()


def test_convert_with_save_html_renders_from_saved_file(workspace, fake_render):
    md_file = workspace / "doc.md"
    md_file.write_text("# Doc\n", encoding="utf-8")

    _converter(save_html=True).convert(md_file, workspace / "custom.pdf")

    saved = workspace / "out-html" / "doc.html"
    assert saved.exists()
    assert fake_render[0]["html_path"] == Path("out-html") / "doc.html"
    assert fake_render[0]["html"] is None
    assert (workspace / "custom.pdf").exists()


def test_large_html_is_staged_in_temp_file_and_removed(workspace, fake_render):
    md_file = workspace / "big.md"
    md_file.write_text("# Big\n", encoding="utf-8")

    _converter(html_file_threshold=10).convert(md_file)

    call = fake_render[0]
    assert call["html"] is None
    assert call["staged_exists"] is True
    assert Path(call["html_path"]).parent.name == TEMP_DIR_NAME
    assert not (workspace / TEMP_DIR_NAME).exists()


def test_render_failure_still_removes_staged_html(workspace, monkeypatch):
    from md2pdf.errors import RenderError

    async def failing_render(self, output_pdf, date_label, html=None, html_path=None):
        raise RenderError("engine crashed")

    monkeypatch.setattr(RenderDriver, "render_pdf", failing_render)
    md_file = workspace / "big.md"
    md_file.write_text("# Big\n", encoding="utf-8")

    with pytest.raises(RenderError):
        _converter(html_file_threshold=10).convert(md_file)

    assert not (workspace / TEMP_DIR_NAME).exists()


def test_main_html_only(workspace, capsys):
    md_file = workspace / "doc.md"
    md_file.write_text("# Doc\n", encoding="utf-8")

    assert main([str(md_file), "--html-only", "--no-number"]) == 0

    html = (workspace / "out-html" / "doc.html").read_text(encoding="utf-8")
    assert "h2counter" not in html
    assert "[OK]" in capsys.readouterr().out


def test_main_converts_with_cli_options(workspace, monkeypatch, fake_render):
    monkeypatch.setattr(converter_module, "check_dependencies", lambda *args, **kwargs: True)
    captured = {}
    original_init = MarkdownToPDFConverter.__init__

    def spy_init(self, config=None, logger=None):
        captured["config"] = config
        original_init(self, config, logger)

    monkeypatch.setattr(MarkdownToPDFConverter, "__init__", spy_init)
    md_file = workspace / "doc.md"
    md_file.write_text("# Doc\n", encoding="utf-8")

    code = main([str(md_file), "out.pdf", "--margins", "1cm 2cm", "--format", "letter",
                 "--scale", "0.9", "--no-embed", "--no-print-background"])

    assert code == 0
    assert (workspace / "out.pdf").exists()
    config = captured["config"]
    assert config.margins == {"top": "1cm", "right": "2cm", "bottom": "1cm", "left": "2cm"}
    assert config.pdf_format == "Letter"
    assert config.pdf_scale == 0.9
    assert config.embed_assets is False
    assert config.print_background is False


def test_main_reports_missing_input(workspace, capsys):
    assert main([str(workspace / "absent.md"), "--html-only"]) == 1
    assert "[ERROR]" in capsys.readouterr().out


def test_main_rejects_invalid_margins(workspace, capsys):
    md_file = workspace / "doc.md"
    md_file.write_text("# Doc\n", encoding="utf-8")

    assert main([str(md_file), "--margins", "9in"]) == 1
    assert "Margin too large" in capsys.readouterr().out


def test_main_stops_when_browser_is_missing(workspace, monkeypatch, fake_render):
    monkeypatch.setattr(converter_module, "check_dependencies", lambda *args, **kwargs: False)
    md_file = workspace / "doc.md"
    md_file.write_text("# Doc\n", encoding="utf-8")

    assert main([str(md_file)]) == 1
    assert fake_render == []


def test_main_without_input_is_a_usage_error(workspace):
    with pytest.raises(SystemExit) as excinfo:
        main([])

    assert excinfo.value.code == 2


def test_main_check_reports_dependency_status(monkeypatch):
    seen = {}

    def fake_check(logger, check_optional=True):
        seen["optional"] = check_optional
        return False

    monkeypatch.setattr(converter_module, "check_dependencies", fake_check)

    assert main(["--check"]) == 1
    assert seen["optional"] is True
