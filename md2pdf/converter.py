"""
Markdown to PDF converter.

Pipeline: front matter split, markdown rendering, image embedding, metadata
block, template assembly, then headless Chromium (Playwright) prints the
result to PDF.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from .assembler import AssembledDocument, DocumentAssembler
from .assets import TEMP_DIR_NAME, AssetResolver
from .config import RenderConfiguration, load_config, parse_margins
from .console import ConsoleLogger
from .dependencies import check_dependencies
from .errors import ConfigurationError, ConversionError, InputError
from .frontmatter import Document, load_document, resolve_auto_number, resolve_date_label
from .markdown_renderer import MarkdownTransformer, extract_title
from .metadata import insert_after_first_heading, render_metadata_block
from .renderer import RenderDriver

PDF_OUTPUT_DIR = "out-pdf"
HTML_OUTPUT_DIR = "out-html"


def default_pdf_path(md_file: Path) -> Path:
    return Path(PDF_OUTPUT_DIR) / f"{Path(md_file).stem}.pdf"


def default_html_path(md_file: Path) -> Path:
    return Path(HTML_OUTPUT_DIR) / f"{Path(md_file).stem}.html"


class MarkdownToPDFConverter:
    """Converts one markdown file to HTML and PDF."""

    def __init__(self, config: Optional[RenderConfiguration] = None, logger: Optional[ConsoleLogger] = None):
        self.config = config or RenderConfiguration()
        self.logger = logger or ConsoleLogger(self.config.verbose)
        self.transformer = MarkdownTransformer(self.config.diagram_keyword, self.logger)
        self.assembler = DocumentAssembler(self.config)

    def _read(self, md_file: Path) -> Document:
        md_file = Path(md_file)
        if not md_file.is_file():
            raise InputError(f"Markdown file not found: {md_file}", [
                "Check the path and file name",
            ])
        return load_document(md_file, self.logger)

    async def _build_html(self, md_file: Path, pbar: Optional[tqdm] = None) -> AssembledDocument:
        def step(label: str) -> None:
            # Marks the previous stage done, except before the first one
            if pbar is not None:
                if label != "Reading":
                    pbar.update(1)
                pbar.set_description(f"  {Path(md_file).name} - {label}")

        step("Reading")
        document = self._read(md_file)
        self.logger.debug(f"Front matter keys: {sorted(document.front_matter) or 'none'}")

        step("Markdown")
        fragment = self.transformer.render(document.body)

        step("Images")
        resolver = AssetResolver(document.source_path.parent, self.config, self.logger)
        fragment = await resolver.resolve(fragment)
        fragment = insert_after_first_heading(fragment, render_metadata_block(document.front_matter))

        step("HTML")
        title = extract_title(document.body, document.source_path.stem)
        auto_number = resolve_auto_number(document.front_matter)
        date_label = resolve_date_label(document.front_matter, self.config.date_format)
        assembled = self.assembler.assemble(fragment, title, auto_number=auto_number, date_label=date_label)
        numbering = self.config.auto_number if auto_number is None else auto_number
        self.logger.debug(f"Assembled '{title}' (auto numbering: {'ON' if numbering else 'OFF'})")
        return assembled

    def build_html(self, md_file: Path) -> AssembledDocument:
        """Run every stage except PDF printing."""
        return asyncio.run(self._build_html(md_file))

    def write_html(self, md_file: Path, output_html: Optional[Path] = None) -> Path:
        output_html = Path(output_html) if output_html else default_html_path(md_file)
        assembled = self.build_html(md_file)
        self._save_html(assembled.html, output_html)
        self.logger.success(f"Generated {output_html}")
        return output_html

    def _save_html(self, html: str, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(html)
        self.logger.debug(f"Saved HTML to {path}")

    async def _convert(self, md_file: Path, output_pdf: Path) -> Path:
        md_file = Path(md_file)
        with tqdm(total=6, desc=f"  {md_file.name}", unit="step", leave=False) as pbar:
            assembled = await self._build_html(md_file, pbar)
            pbar.update(1)

            pbar.set_description(f"  {md_file.name} - Staging")
            html_path: Optional[Path] = None
            temp_html: Optional[Path] = None
            if self.config.save_html:
                html_path = default_html_path(md_file)
                self._save_html(assembled.html, html_path)
            else:
                size = len(assembled.html.encode('utf-8'))
                if size > self.config.html_file_threshold:
                    temp_dir = md_file.resolve().parent / TEMP_DIR_NAME
                    temp_html = temp_dir / f"{md_file.stem}.html"
                    self.logger.debug(f"HTML is {size / 1024 / 1024:.1f}MB, loading it from {temp_html}")
                    self._save_html(assembled.html, temp_html)
                    html_path = temp_html
            pbar.update(1)

            pbar.set_description(f"  {md_file.name} - PDF")
            driver = RenderDriver(self.config, self.logger)
            try:
                if html_path is not None:
                    await driver.render_pdf(output_pdf, assembled.date_label, html_path=html_path)
                else:
                    await driver.render_pdf(output_pdf, assembled.date_label, html=assembled.html)
            finally:
                if temp_html is not None:
                    self._remove_temp_html(temp_html)
            pbar.update(1)

        return output_pdf

    def _remove_temp_html(self, temp_html: Path) -> None:
        try:
            temp_html.unlink(missing_ok=True)
            if not any(temp_html.parent.iterdir()):
                temp_html.parent.rmdir()
        except OSError as e:
            self.logger.warning(f"Failed to remove temporary HTML {temp_html}: {e}")

    def convert(self, md_file: Path, output_pdf: Optional[Path] = None) -> Path:
        """Convert md_file to PDF. Raises ConversionError on any fatal failure."""
        output_pdf = Path(output_pdf) if output_pdf else default_pdf_path(md_file)
        self.logger.info(f"Converting {Path(md_file).name}")

        loop = asyncio.new_event_loop()
        try:
            loop.run_until_complete(self._convert(Path(md_file), output_pdf))
        finally:
            loop.close()

        self.logger.success(f"Generated {output_pdf}")
        return output_pdf


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="md2pdf",
        description="Convert a markdown file to PDF with GitHub styling, math, diagrams and embedded images",
    )
    parser.add_argument("input", nargs="?", help="Markdown file to convert")
    parser.add_argument("output", nargs="?", help=f"Output PDF path (default: {PDF_OUTPUT_DIR}/<name>.pdf)")
    parser.add_argument("--save-html", action="store_true", default=None,
                        help=f"Also save the intermediate HTML to {HTML_OUTPUT_DIR}/<name>.html")
    parser.add_argument("-v", "--verbose", action="store_true", default=None, help="Enable debug logging")
    parser.add_argument("--no-embed", action="store_true",
                        help="Reference local images by file URI instead of embedding them")
    parser.add_argument("--margins", default=None,
                        help="Page margins in CSS format, 1, 2 or 4 values (default: '20mm 12mm 16mm 12mm'). "
                             "Range: 0-3 inches. Units: in, cm, mm, pt, px")
    parser.add_argument("--format", dest="pdf_format", default=None, help="Paper format (default: A4)")
    parser.add_argument("--scale", dest="pdf_scale", type=float, default=None,
                        help="Print scale between 0.1 and 2.0 (default: 1.0)")
    parser.add_argument("--no-number", action="store_true", help="Disable automatic heading numbers")
    parser.add_argument("--no-print-background", action="store_true", help="Do not print background colors")
    parser.add_argument("--template", dest="template_path", default=None, help="Path to a custom template.html")
    parser.add_argument("--html-only", action="store_true", help="Write the HTML document and skip the PDF")
    parser.add_argument("--check", action="store_true", help="Check external dependencies and exit")
    return parser


def _cli_config(args: argparse.Namespace) -> dict:
    cli_config = {
        "save_html": args.save_html,
        "verbose": args.verbose,
        "pdf_format": args.pdf_format,
        "pdf_scale": args.pdf_scale,
        "template_path": args.template_path,
    }
    if args.no_embed:
        cli_config["embed_assets"] = False
    if args.no_number:
        cli_config["auto_number"] = False
    if args.no_print_background:
        cli_config["print_background"] = False
    if args.margins:
        for side, value in parse_margins(args.margins).items():
            cli_config[f"margin_{side}"] = value
    return cli_config


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.check:
        logger = ConsoleLogger(verbose=bool(args.verbose))
        return 0 if check_dependencies(logger, check_optional=True) else 1

    if not args.input:
        parser.error("the following arguments are required: input")

    logger = ConsoleLogger(verbose=bool(args.verbose))
    try:
        config = load_config(_cli_config(args))
    except ConfigurationError as e:
        logger.error(str(e))
        return 1
    logger.verbose = config.verbose

    try:
        converter = MarkdownToPDFConverter(config, logger)
        if args.html_only:
            output_html = Path(args.output) if args.output else None
            converter.write_html(Path(args.input), output_html)
            return 0

        if not check_dependencies(logger, check_optional=False):
            return 1
        converter.convert(Path(args.input), Path(args.output) if args.output else None)
    except ConversionError as e:
        logger.error(str(e))
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
