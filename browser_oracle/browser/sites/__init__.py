"""
Chat front ends the engine can drive.

Importing this package registers the built-in observers with SiteRegistry.
"""

from .base import SiteObserver, SiteRegistry, min_index_literal
from .chatgpt import ChatGPTObserver
from .grok import GrokObserver

__all__ = [
    "SiteObserver",
    "SiteRegistry",
    "min_index_literal",
    "ChatGPTObserver",
    "GrokObserver",
]
