"""Checks for the external programs the converter relies on."""

import shutil
import sys
from pathlib import Path
from typing import Optional

from .console import ConsoleLogger

PDF_CONVERTER = "pdftocairo"


def chromium_executable() -> Optional[Path]:
    """Path of the Playwright-managed Chromium, or None when it is not installed."""
    from playwright.sync_api import Error as PlaywrightError
    from playwright.sync_api import sync_playwright

    try:
        with sync_playwright() as pw:
            path = Path(pw.chromium.executable_path)
    except PlaywrightError:
        return None
    return path if path.exists() else None


def check_dependencies(logger: Optional[ConsoleLogger] = None, check_optional: bool = True) -> bool:
    """Report dependency status. Returns False when a required one is missing."""
    logger = logger or ConsoleLogger()
    ok = True

    chromium = chromium_executable()
    if chromium:
        logger.success(f"Playwright Chromium is available ({chromium})")
    else:
        logger.error("Playwright Chromium is not available")
        logger.info(f"Install it with: {sys.executable} -m playwright install chromium")
        ok = False

    if check_optional:
        converter = shutil.which(PDF_CONVERTER)
        if converter:
            logger.success(f"{PDF_CONVERTER} is available ({converter})")
        else:
            logger.warning(f"{PDF_CONVERTER} is not available; PDF images will be left unconverted")
            logger.info("  macOS: brew install poppler")
            logger.info("  Debian/Ubuntu: sudo apt-get install poppler-utils")

    return ok
