"""
Exceptions raised by the markdown to PDF pipeline.

Only fatal conditions are modelled here. Per-item problems (a missing image,
a highlighting failure, malformed front matter) are logged as warnings by the
component that detects them and never surface as exceptions.
"""

from typing import List, Optional


class ConversionError(Exception):
    """Base exception for conversion failures."""

    def __init__(self, message: str, suggestions: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.suggestions = suggestions or []

    def __str__(self) -> str:
        msg = super().__str__()
        if self.suggestions:
            msg += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                msg += f"\n  {i}. {suggestion}"
        return msg


class InputError(ConversionError):
    """The markdown source could not be read."""


class ConfigurationError(ConversionError):
    """A configuration value is invalid."""


class TemplateNotFoundError(ConfigurationError):
    """The HTML styling template is missing from every lookup location."""

    def __init__(self, message: str, searched_paths: Optional[List[str]] = None) -> None:
        self.searched_paths = searched_paths or []
        suggestions = [
            "Place a template.html in the current directory",
            "Reinstall the package so the bundled template is available",
        ]
        super().__init__(message, suggestions)

    def __str__(self) -> str:
        msg = super().__str__()
        if self.searched_paths:
            msg += "\n\nSearched paths:"
            for path in self.searched_paths:
                msg += f"\n  - {path}"
        return msg


class RenderError(ConversionError):
    """The rendering engine failed to produce the PDF."""


class RenderTimeoutError(RenderError):
    """A wait step in the rendering engine exceeded its timeout."""


class RenderSessionClosedError(RenderError):
    """The browser page closed before rendering finished."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f"Browser page was closed unexpectedly ({stage})")
