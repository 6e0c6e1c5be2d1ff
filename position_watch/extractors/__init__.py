"""Browser-backed position extractors."""
from __future__ import annotations

from ..config import ExtractorConfig
from ..interfaces.extractor import Extractor
from .isolated import IsolatedBrowserExtractor
from .shared import SharedBrowserExtractor


def build_extractor(config: ExtractorConfig) -> Extractor:
    if config.mode == "isolated":
        return IsolatedBrowserExtractor(config)
    return SharedBrowserExtractor(config)


__all__ = ["SharedBrowserExtractor", "IsolatedBrowserExtractor", "build_extractor"]
