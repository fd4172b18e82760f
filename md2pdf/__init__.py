"""Markdown to PDF conversion with GitHub styling, math, diagrams and embedded images."""

from .assembler import AssembledDocument, DocumentAssembler
from .config import Config, RenderConfiguration, load_config
from .converter import MarkdownToPDFConverter, main
from .errors import (
    ConfigurationError,
    ConversionError,
    InputError,
    RenderError,
    RenderSessionClosedError,
    RenderTimeoutError,
    TemplateNotFoundError,
)

__version__ = "1.0.0"

__all__ = [
    "AssembledDocument",
    "Config",
    "ConfigurationError",
    "ConversionError",
    "DocumentAssembler",
    "InputError",
    "MarkdownToPDFConverter",
    "RenderConfiguration",
    "RenderError",
    "RenderSessionClosedError",
    "RenderTimeoutError",
    "TemplateNotFoundError",
    "load_config",
    "main",
]
