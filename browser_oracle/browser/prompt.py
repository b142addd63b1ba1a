"""
Prompt assembly for browser runs.

The composer receives one plain-text message laid out in sections:

    [SYSTEM]
    <system prompt>

    [USER]
    <user prompt>

    [FILE: relative/path.py]
    <file content>

File sections are only pasted inline when the attachment plan is "inline".
Otherwise the files travel as uploads, or as one bundle file written to a
temporary directory when bundling was requested or there are too many files.
When files were pasted inline, a fallback submission (bare prompt with the
files uploaded instead) is prepared for the case where the composer
truncates the oversized message.
"""

import logging
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from browser_oracle.exceptions import ConfigurationError
from browser_oracle.utils.time import run_id_from_timestamp

from .models import BrowserAttachment, FallbackSubmission, estimate_tokens
from .policies import AttachmentPlan, FileSection, build_attachment_plan, format_file_section

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a senior engineer answering a single, self-contained question. "
    "Use the attached files as the source of truth and say so when they are "
    "not enough to answer."
)

BUNDLE_FILE_NAME = "attachments-bundle.txt"


@dataclass
class BrowserPromptArtifacts:
    """
    Everything the session needs to submit one prompt.

    Attributes:
        composer_text: Text typed into the composer
        attachments: Files to upload (a single bundle file in bundle mode)
        plan: Attachment plan that produced this layout
        estimated_input_tokens: Rough token count of system + user text
        bundle_path: Path of the bundle file, if one was written
        fallback: Alternate submission for composer truncation, if any
    """

    composer_text: str
    attachments: list[BrowserAttachment] = field(default_factory=list)
    plan: AttachmentPlan | None = None
    estimated_input_tokens: int = 0
    bundle_path: Path | None = None
    fallback: FallbackSubmission | None = None


def read_file_sections(paths: Iterable[str | Path], cwd: Path | None = None) -> list[FileSection]:
    """
    Read files for the prompt.

    Raises:
        ConfigurationError: If a file is missing or not UTF-8 text
    """
    cwd = cwd or Path.cwd()
    sections: list[FileSection] = []
    for raw in paths:
        path = Path(raw).expanduser()
        if not path.is_absolute():
            path = cwd / path
        path = path.resolve()
        if not path.is_file():
            raise ConfigurationError(f"Attachment not found: {raw}")
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ConfigurationError(f"Failed to read attachment {raw}: {e}") from e
        try:
            display = str(path.relative_to(cwd.resolve()))
        except ValueError:
            display = str(path)
        sections.append(FileSection(path=str(path), display_path=display, content=content))
    return sections


def compose_text(system_prompt: str, user_prompt: str, inline_block: str = "") -> str:
    lines = ["[SYSTEM]", system_prompt, "", "[USER]", user_prompt, ""]
    if inline_block:
        lines.append(inline_block)
    return "\n".join(lines).rstrip()


def write_bundle(sections: list[FileSection], directory: Path | None = None) -> Path:
    """Concatenate all file sections into one text file and return its path."""
    directory = directory or Path(tempfile.mkdtemp(prefix=f"oracle-bundle-{run_id_from_timestamp()}-"))
    directory.mkdir(parents=True, exist_ok=True)
    bundle_path = directory / BUNDLE_FILE_NAME
    body = "\n".join(format_file_section(s.display_path, s.content) for s in sections)
    bundle_path.write_text(body, encoding="utf-8")
    logger.debug(f"Wrote attachment bundle with {len(sections)} files to {bundle_path}")
    return bundle_path


def assemble_browser_prompt(
    prompt: str,
    files: Iterable[str | Path] = (),
    *,
    system: str | None = None,
    cwd: Path | None = None,
    inline_files: bool = False,
    bundle_requested: bool = False,
    bundle_dir: Path | None = None,
) -> BrowserPromptArtifacts:
    """
    Build the composer text and upload list for one run.

    Example:
        >>> artifacts = assemble_browser_prompt("Explain this", ["main.py"], inline_files=True)
        >>> artifacts.composer_text.startswith("[SYSTEM]")
        True
    """
    system_prompt = (system or "").strip() or DEFAULT_SYSTEM_PROMPT
    user_prompt = prompt.strip()
    sections = read_file_sections(files, cwd)
    plan = build_attachment_plan(
        sections, inline_files=inline_files, bundle_requested=bundle_requested
    )

    attachments = list(plan.attachments)
    bundle_path = None
    if plan.kind == "bundle":
        bundle_path = write_bundle(sections, bundle_dir)
        attachments = [BrowserAttachment.from_path(bundle_path)]

    composer_text = compose_text(system_prompt, user_prompt, plan.inline_block)

    fallback = None
    if plan.kind == "inline" and sections:
        upload_plan = build_attachment_plan(sections, inline_files=False)
        fallback_files = list(upload_plan.attachments)
        if upload_plan.kind == "bundle":
            fallback_files = [BrowserAttachment.from_path(write_bundle(sections, bundle_dir))]
        fallback = FallbackSubmission(
            prompt=compose_text(system_prompt, user_prompt), attachments=fallback_files
        )

    return BrowserPromptArtifacts(
        composer_text=composer_text,
        attachments=attachments,
        plan=plan,
        estimated_input_tokens=estimate_tokens(system_prompt + "\n" + user_prompt),
        bundle_path=bundle_path,
        fallback=fallback,
    )
