"""
Per-run plans for cookies and attachments.

Exactly one CookiePlan and one AttachmentPlan govern a run. Both are plain
tagged values chosen up front from the config so the rest of the engine
branches on ``plan.kind`` instead of re-reading config flags.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from browser_oracle.config.constants import MAX_ATTACHMENTS
from browser_oracle.config.schema import BrowserAutomationConfig

from .models import BrowserAttachment

CookiePlanKind = Literal["inline", "profile", "disabled"]
AttachmentPlanKind = Literal["inline", "upload", "bundle"]


@dataclass(frozen=True)
class CookiePlan:
    """
    How session cookies reach the automation browser.

    - inline: replay cookies given directly in config
    - profile: read cookies from the user's Chrome profile (optionally
      filtered by allowlist) and replay them
    - disabled: start with whatever the profile directory already holds
    """

    kind: CookiePlanKind
    description: str
    allowlist: tuple[str, ...] | None = None
    profile_name: str | None = None


@dataclass(frozen=True)
class FileSection:
    """One file read for the prompt."""

    path: str
    display_path: str
    content: str


@dataclass
class AttachmentPlan:
    """
    How files reach the model.

    - inline: pasted into the composer as [FILE: ...] sections
    - upload: one upload per file
    - bundle: all files concatenated into a single uploaded file
    """

    kind: AttachmentPlanKind
    inline_block: str = ""
    inline_file_count: int = 0
    attachments: list[BrowserAttachment] = field(default_factory=list)

    @property
    def should_bundle(self) -> bool:
        return self.kind == "bundle"


def build_cookie_plan(config: BrowserAutomationConfig) -> CookiePlan:
    """
    Decide where cookies for this run come from.

    Inline cookies win over profile sync. With neither, the run starts
    with whatever the automation profile already holds.

    Args:
        config: Validated browser config

    Returns:
        CookiePlan with a human-readable description for the run log

    Example:
        >>> build_cookie_plan(BrowserAutomationConfig(cookie_sync=False)).kind
        'disabled'
    """
    if config.inline_cookies:
        return CookiePlan(
            kind="inline",
            description=f"Cookies: inline payload ({len(config.inline_cookies)})",
        )
    if not config.cookie_sync:
        return CookiePlan(kind="disabled", description="Cookie sync disabled; starting fresh")
    return CookiePlan(
        kind="profile",
        description=f"Cookie sync: copy Chrome profile ({config.chrome_profile})",
        allowlist=config.cookie_names,
        profile_name=config.chrome_profile,
    )


def format_file_section(display_path: str, content: str) -> str:
    return f"[FILE: {display_path}]\n{content.rstrip()}\n"


def build_attachment_plan(
    sections: list[FileSection],
    *,
    inline_files: bool,
    bundle_requested: bool = False,
    max_attachments: int = MAX_ATTACHMENTS,
) -> AttachmentPlan:
    """
    Pick inline, upload or bundle for the given files.

    Upload turns into bundle when bundling was requested or when there are
    more than max_attachments files.
    """
    if inline_files:
        block = "\n".join(
            format_file_section(section.display_path, section.content) for section in sections
        ).strip()
        return AttachmentPlan(kind="inline", inline_block=block, inline_file_count=len(sections))

    attachments = [
        BrowserAttachment(
            path=Path(section.path),
            display_path=section.display_path,
            size_bytes=len(section.content.encode("utf-8")),
        )
        for section in sections
    ]
    kind: AttachmentPlanKind = (
        "bundle" if bundle_requested or len(attachments) > max_attachments else "upload"
    )
    return AttachmentPlan(kind=kind, attachments=attachments)