"""
Local image resolution and embedding.

Every <img> in the rendered fragment is resolved against the markdown file's
directory. Raster images become base64 data URIs, small SVGs are spliced
inline, large SVGs are base64 encoded, and PDFs are converted to SVG with
pdftocairo first. With embedding switched off, local files are referenced by
file:// URI instead.

Resolution of distinct sources runs concurrently; all results are collected
into a lookup table before a single substitution pass rewrites the fragment,
so the output never depends on completion order.
"""

import asyncio
import base64
import html
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

from bs4 import BeautifulSoup
from PIL import Image, UnidentifiedImageError

from .config import RenderConfiguration
from .console import ConsoleLogger

TEMP_DIR_NAME = ".md2pdf_temp"

RASTER_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
}
SVG_MEDIA_TYPE = "image/svg+xml"

POPPLER_HINTS = [
    "Poppler (pdftocairo) may not be installed. Install it with:",
    "   macOS: brew install poppler",
    "   Ubuntu/Debian: sudo apt-get install poppler-utils",
]

_IMG_TAG_RE = re.compile(r'<img\b(?:[^>"\']|"[^"]*"|\'[^\']*\')*>', re.IGNORECASE)
_REMOTE_RE = re.compile(r'^(?:https?:)?//', re.IGNORECASE)
_SVG_ROOT_RE = re.compile(r'<svg\b((?:[^>"\']|"[^"]*"|\'[^\']*\')*?)(/?)>', re.IGNORECASE)
_ATTR_NAME_RE = re.compile(r'([^\s=/>"\']+)(?:\s*=\s*(?:"[^"]*"|\'[^\']*\'|[^\s>]+))?')
_SVG_CLOSE_RE = re.compile(r'</svg\s*>', re.IGNORECASE)
_ROOT_TITLE_RE = re.compile(r'\s*<title\b', re.IGNORECASE)


class AssetKind(Enum):
    REMOTE = "remote"
    RASTER = "raster"
    VECTOR = "vector"
    DOCUMENT = "document"
    UNSUPPORTED = "unsupported"
    MISSING = "missing"


class AssetOutcome(Enum):
    INLINE_DATA = "embedded-inline-data"
    INLINE_MARKUP = "embedded-inline-markup"
    LOCAL_REFERENCE = "rewritten-local-reference"
    UNMODIFIED = "left-unmodified"
    DROPPED = "dropped-with-warning"


class ConversionStatus(Enum):
    CONVERTED = "converted"
    TOOL_MISSING = "tool-missing"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class AssetResult:
    """Resolution outcome of one distinct image source."""

    source: str
    kind: AssetKind
    outcome: AssetOutcome
    value: Optional[str] = None
    path: Optional[Path] = None
    reason: str = ""
    fallback: bool = False
    artifacts: Tuple[Path, ...] = field(default_factory=tuple)

    @classmethod
    def ok(cls, source: str, kind: AssetKind, outcome: AssetOutcome, value: str,
           path: Optional[Path] = None, artifacts: Tuple[Path, ...] = ()) -> "AssetResult":
        return cls(source, kind, outcome, value=value, path=path, artifacts=artifacts)

    @classmethod
    def with_fallback(cls, source: str, kind: AssetKind, outcome: AssetOutcome, value: Optional[str],
                      reason: str, path: Optional[Path] = None,
                      artifacts: Tuple[Path, ...] = ()) -> "AssetResult":
        return cls(source, kind, outcome, value=value, path=path, reason=reason,
                   fallback=True, artifacts=artifacts)

    @classmethod
    def failed(cls, source: str, kind: AssetKind, reason: str, path: Optional[Path] = None,
               artifacts: Tuple[Path, ...] = ()) -> "AssetResult":
        return cls(source, kind, AssetOutcome.UNMODIFIED, path=path, reason=reason, artifacts=artifacts)

    @property
    def modifies_markup(self) -> bool:
        return self.outcome in (AssetOutcome.INLINE_DATA, AssetOutcome.INLINE_MARKUP,
                                AssetOutcome.LOCAL_REFERENCE, AssetOutcome.DROPPED)


def parse_img_attributes(tag: str) -> Dict[str, str]:
    """Attributes of a single <img> tag, entity-decoded, keys lower-cased."""
    soup = BeautifulSoup(tag, "html.parser")
    img = soup.find("img")
    if img is None:
        return {}
    attrs = {}
    for key, value in img.attrs.items():
        if isinstance(value, list):
            value = " ".join(value)
        attrs[key.lower()] = value
    return attrs


def classify(path: Path) -> AssetKind:
    ext = path.suffix.lower().lstrip(".")
    if ext in RASTER_TYPES:
        return AssetKind.RASTER
    if ext == "svg":
        return AssetKind.VECTOR
    if ext == "pdf":
        return AssetKind.DOCUMENT
    return AssetKind.UNSUPPORTED


def detect_media_type(path: Path) -> str:
    """Media type from the image content, falling back to the extension."""
    try:
        with Image.open(path) as img:
            media_type = Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        media_type = None
    return media_type or RASTER_TYPES.get(path.suffix.lower().lstrip("."), "application/octet-stream")


def encode_data_uri(data: bytes, media_type: str) -> str:
    return f"data:{media_type};base64,{base64.b64encode(data).decode('ascii')}"


def _attribute_names(start_tag_attrs: str) -> set:
    return {m.group(1).lower() for m in _ATTR_NAME_RE.finditer(start_tag_attrs)}


def _replace_src(tag: str, new_src: str) -> str:
    """Swap the value of the src attribute, leaving the rest of the tag as written."""
    for match in _ATTR_NAME_RE.finditer(tag, len("<img")):
        if match.group(1).lower() == "src":
            return f'{tag[:match.start()]}src="{new_src}"{tag[match.end():]}'
    return tag


def splice_svg(svg_text: str, img_attrs: Dict[str, str]) -> Optional[str]:
    """Prepare SVG file content for inlining in place of an <img>.

    Returns the markup from the root <svg> element onwards, with width, height
    and other passthrough attributes of the image copied onto the root unless
    the SVG already defines them, and the alt text added as <title>. Returns
    None when the text has no <svg> root.
    """
    root = _SVG_ROOT_RE.search(svg_text)
    if root is None:
        return None

    closes = list(_SVG_CLOSE_RE.finditer(svg_text))
    end = closes[-1].end() if closes and not root.group(2) else root.end()
    markup = svg_text[root.start():end]
    root_attrs, self_closing = root.group(1), root.group(2)

    existing = _attribute_names(root_attrs)
    extra = []
    ordered = [k for k in ("width", "height") if k in img_attrs]
    ordered += [k for k in img_attrs if k not in ("width", "height", "alt", "src")]
    for key in ordered:
        if key in existing:
            continue
        extra.append(f'{key}="{html.escape(img_attrs[key], quote=True)}"')
        existing.add(key)

    new_attrs = root_attrs.rstrip()
    if extra:
        new_attrs = f"{new_attrs} {' '.join(extra)}"
    start_tag = f"<svg{new_attrs}{self_closing}>"

    alt = img_attrs.get("alt")
    body = markup[root.end() - root.start():]
    if alt and not self_closing and not _ROOT_TITLE_RE.match(body):
        start_tag += f"<title>{html.escape(alt, quote=False)}</title>"

    return start_tag + body


class AssetResolver:
    """Resolve and embed the images referenced by one HTML fragment."""

    def __init__(self, base_dir: Path, config: RenderConfiguration, logger: Optional[ConsoleLogger] = None,
                 converter: str = "pdftocairo"):
        self.base_dir = Path(base_dir).resolve()
        self.config = config
        self.logger = logger or ConsoleLogger()
        self.converter = converter
        self.temp_dir = self.base_dir / TEMP_DIR_NAME

    async def resolve(self, fragment: str) -> str:
        """Return the fragment with every resolvable image rewritten."""
        sources: List[str] = []
        for match in _IMG_TAG_RE.finditer(fragment):
            src = parse_img_attributes(match.group(0)).get("src")
            if src and src not in sources:
                sources.append(src)

        if not sources:
            return fragment

        results = await asyncio.gather(*(self._resolve_one(src) for src in sources))
        lookup: Dict[str, AssetResult] = {}
        for result in results:
            lookup[result.source] = result

        try:
            return self.substitute(fragment, lookup)
        finally:
            self._cleanup(results)
            self._log_summary(results)

    def substitute(self, fragment: str, lookup: Dict[str, AssetResult]) -> str:
        """Rewrite each <img> tag from the lookup table in one pass."""

        def replace(match: re.Match) -> str:
            tag = match.group(0)
            attrs = parse_img_attributes(tag)
            result = lookup.get(attrs.get("src", ""))
            if result is None or not result.modifies_markup:
                return tag
            if result.outcome is AssetOutcome.DROPPED:
                return ""
            if result.outcome is AssetOutcome.INLINE_MARKUP:
                return splice_svg(result.value, attrs) or tag
            return _replace_src(tag, html.escape(result.value, quote=True))

        return _IMG_TAG_RE.sub(replace, fragment)

    def _locate(self, src: str) -> Path:
        if src.lower().startswith("file://"):
            src = urlparse(src).path
        for candidate in (src, unquote(src)):
            path = Path(candidate).expanduser()
            if not path.is_absolute():
                path = self.base_dir / path
            if path.exists():
                return path.resolve()
        path = Path(unquote(src))
        return path if path.is_absolute() else self.base_dir / path

    async def _resolve_one(self, src: str) -> AssetResult:
        if _REMOTE_RE.match(src) or src.lower().startswith("data:"):
            return AssetResult(src, AssetKind.REMOTE, AssetOutcome.UNMODIFIED)

        path = self._locate(src)
        try:
            if not path.is_file():
                self.logger.warning(f"Image not found: {path}")
                return AssetResult.failed(src, AssetKind.MISSING, "file not found", path)

            kind = classify(path)
            if kind is AssetKind.UNSUPPORTED:
                self.logger.warning(f"Unsupported image format: {path.suffix or path.name} ({src})")
                return AssetResult.failed(src, kind, "unsupported format", path)
            if kind is AssetKind.RASTER:
                return await self._resolve_raster(src, path)
            if kind is AssetKind.VECTOR:
                return await self._resolve_vector(src, path, AssetKind.VECTOR)
            return await self._resolve_document(src, path)
        except Exception as e:
            self.logger.warning(f"Failed to process image {path}: {e}")
            return AssetResult.failed(src, classify(path), str(e), path)

    async def _resolve_raster(self, src: str, path: Path) -> AssetResult:
        if not self.config.embed_assets:
            return AssetResult.ok(src, AssetKind.RASTER, AssetOutcome.LOCAL_REFERENCE, path.as_uri(), path)

        def encode() -> str:
            return encode_data_uri(path.read_bytes(), detect_media_type(path))

        data_uri = await asyncio.to_thread(encode)
        self.logger.debug(f"Embedded image: {src} ({path.stat().st_size} bytes)")
        return AssetResult.ok(src, AssetKind.RASTER, AssetOutcome.INLINE_DATA, data_uri, path)

    async def _resolve_vector(self, src: str, svg_path: Path, kind: AssetKind,
                              artifacts: Tuple[Path, ...] = ()) -> AssetResult:
        size = svg_path.stat().st_size
        if size < self.config.svg_inline_limit:
            svg_text = await asyncio.to_thread(svg_path.read_text, encoding="utf-8", errors="replace")
            if _SVG_ROOT_RE.search(svg_text):
                return AssetResult.ok(src, kind, AssetOutcome.INLINE_MARKUP, svg_text, svg_path, artifacts)
            reason = "no <svg> root element"
            if not self.config.embed_assets:
                self.logger.warning(f"Cannot inline {svg_path.name}: {reason}")
                return AssetResult.failed(src, kind, reason, svg_path, artifacts)
            self.logger.warning(f"Cannot inline {svg_path.name}: {reason}, embedding as data URI")
            data = svg_text.encode("utf-8")
            return AssetResult.with_fallback(src, kind, AssetOutcome.INLINE_DATA,
                                             encode_data_uri(data, SVG_MEDIA_TYPE), reason, svg_path, artifacts)

        if not self.config.embed_assets:
            return AssetResult.ok(src, kind, AssetOutcome.LOCAL_REFERENCE, svg_path.as_uri(), svg_path, artifacts)

        data = await asyncio.to_thread(svg_path.read_bytes)
        self.logger.debug(f"Large SVG embedded as base64: {svg_path.name} ({size / 1024 / 1024:.2f}MB)")
        return AssetResult.ok(src, kind, AssetOutcome.INLINE_DATA, encode_data_uri(data, SVG_MEDIA_TYPE),
                              svg_path, artifacts)

    async def _resolve_document(self, src: str, pdf_path: Path) -> AssetResult:
        if not self.config.embed_assets:
            self.logger.warning(f"PDF images should be embedded; browsers may not display {pdf_path.name}")
            return AssetResult.ok(src, AssetKind.DOCUMENT, AssetOutcome.LOCAL_REFERENCE, pdf_path.as_uri(), pdf_path)

        status, svg_path, detail = await self.convert_pdf_to_svg(pdf_path)
        artifacts = (svg_path,) if svg_path is not None else ()
        if status is not ConversionStatus.CONVERTED:
            self.logger.warning(f"PDF to SVG conversion failed ({status.value}): {pdf_path} {detail}".rstrip())
            if status is ConversionStatus.TOOL_MISSING:
                for hint in POPPLER_HINTS:
                    self.logger.warning(hint)
            return AssetResult.failed(src, AssetKind.DOCUMENT, f"{status.value}: {detail}", pdf_path, artifacts)

        try:
            return await self._resolve_vector(src, svg_path, AssetKind.DOCUMENT, artifacts)
        except OSError as e:
            self.logger.warning(f"Failed to read converted SVG {svg_path}: {e}")
            return AssetResult.failed(src, AssetKind.DOCUMENT, str(e), pdf_path, artifacts)

    async def convert_pdf_to_svg(self, pdf_path: Path) -> Tuple[ConversionStatus, Optional[Path], str]:
        """Run pdftocairo on one PDF. Returns (status, svg path, detail)."""
        self.temp_dir.mkdir(exist_ok=True)
        svg_path = self.temp_dir / f"{pdf_path.stem}_{uuid.uuid4().hex[:8]}.svg"

        try:
            process = await asyncio.create_subprocess_exec(
                self.converter, "-svg", str(pdf_path), str(svg_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return ConversionStatus.TOOL_MISSING, None, f"'{self.converter}' command not found"

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.config.convert_timeout_s)
        except asyncio.TimeoutError:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            existing = svg_path if svg_path.exists() else None
            return ConversionStatus.TIMEOUT, existing, f"no result after {self.config.convert_timeout_s}s"

        message = stderr.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            existing = svg_path if svg_path.exists() else None
            return ConversionStatus.FAILED, existing, message or f"exit code {process.returncode}"
        if not svg_path.is_file():
            return ConversionStatus.FAILED, None, f"converted file not found: {svg_path}"
        return ConversionStatus.CONVERTED, svg_path, ""

    def _cleanup(self, results: List[AssetResult]) -> None:
        for result in results:
            for artifact in result.artifacts:
                try:
                    artifact.unlink(missing_ok=True)
                except OSError as e:
                    self.logger.warning(f"Failed to delete temporary file {artifact}: {e}")

        if self.temp_dir.is_dir():
            try:
                if not any(self.temp_dir.iterdir()):
                    self.temp_dir.rmdir()
            except OSError as e:
                self.logger.debug(f"Temporary directory not removed: {e}")

    def _log_summary(self, results: List[AssetResult]) -> None:
        inline_svg = sum(1 for r in results if r.outcome is AssetOutcome.INLINE_MARKUP)
        base64_count = sum(1 for r in results if r.outcome is AssetOutcome.INLINE_DATA)
        converted = sum(1 for r in results if r.kind is AssetKind.DOCUMENT and r.modifies_markup)
        self.logger.debug(
            f"Images: {len(results)} found, {inline_svg} inline SVG, {base64_count} base64, {converted} PDF converted"
        )


def resolve_assets(fragment: str, base_dir: Path, config: RenderConfiguration,
                   logger: Optional[ConsoleLogger] = None) -> str:
    """Synchronous wrapper around AssetResolver.resolve."""
    return asyncio.run(AssetResolver(base_dir, config, logger).resolve(fragment))
