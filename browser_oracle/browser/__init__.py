"""
Browser engine for Browser Oracle.

This package drives a chat web UI through Chrome DevTools:
- run_browser_automation() (one prompt in, one BrowserRunResult out)
- Site observers (ChatGPT, Grok) registered on import
- Prompt assembly and the models shared by the engine

Example:
    >>> import asyncio
    >>> from browser_oracle.browser import run_browser_automation
    >>> from browser_oracle.config.schema import BrowserAutomationConfig
    >>>
    >>> config = BrowserAutomationConfig(manual_login=True)
    >>> result = asyncio.run(run_browser_automation("Hello", config=config))
    >>> result.answer_text
    'Hi there'
"""

# Core models
from .models import (
    AssistantAnswer,
    BrowserAttachment,
    BrowserRunResult,
    FallbackSubmission,
    estimate_tokens,
)
from .prompt import BrowserPromptArtifacts, assemble_browser_prompt
from .session import BrowserHandle, attach_browser, run_browser_automation

# Import sites to trigger auto-registration
from .sites import ChatGPTObserver, GrokObserver, SiteObserver, SiteRegistry

__all__ = [
    # Entry point
    "run_browser_automation",
    "attach_browser",
    "BrowserHandle",
    # Data classes
    "AssistantAnswer",
    "BrowserAttachment",
    "BrowserRunResult",
    "FallbackSubmission",
    "BrowserPromptArtifacts",
    # Functions
    "assemble_browser_prompt",
    "estimate_tokens",
    # Registry
    "SiteObserver",
    "SiteRegistry",
    "ChatGPTObserver",
    "GrokObserver",
]
