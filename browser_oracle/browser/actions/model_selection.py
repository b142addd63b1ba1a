"""
Model picker automation.

ensure_model_selection() honours the configured model strategy:

- "select": open the model switcher, match the desired model against the
  menu entries (exact normalized label first, then substring, then test
  id) and click it; raises ElementNotFoundError when nothing matches
- "current": only read and report the label of the active model
- "ignore": leave the picker alone

Label matching lives in Python (match_model_option) so it can be tested
without a browser.
"""

import json
import logging
import re
from dataclasses import dataclass

from browser_oracle.exceptions import ElementNotFoundError

from ..constants import MODEL_BUTTON_SELECTOR
from ..diagnostics import maybe_capture
from ..protocol import ProtocolSession, tagged_script
from .menus import MenuOption, click_option, normalize_label, open_menu

logger = logging.getLogger(__name__)

MODEL_BUTTON_SELECTORS = tuple(part.strip() for part in MODEL_BUTTON_SELECTOR.split(","))

CURRENT_MODEL_SCRIPT = tagged_script(
    "current-model",
    f"""(() => {{
  const button = document.querySelector({json.dumps(MODEL_BUTTON_SELECTOR)});
  if (!button) return null;
  return (button.textContent || button.getAttribute('aria-label') || '').trim();
}})()""",
)


@dataclass(frozen=True)
class ModelMatchers:
    """Normalized label variants and data-testid fragments for one target model."""

    labels: tuple[str, ...]
    test_ids: tuple[str, ...]


@dataclass(frozen=True)
class ModelSelectionOutcome:
    """
    Attributes:
        status: "already-selected", "switched", "current" or "skipped"
        label: Menu label of the selected (or active) model
    """

    status: str
    label: str | None = None


def _unique(values) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for value in values:
        value = value.strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


def build_model_matchers(target: str) -> ModelMatchers:
    """
    Label and test-id variants for a target model name.

    "GPT-5.2 Pro" also matches "ChatGPT 5.2 Pro", "GPT 52 Pro" and test ids
    like "model-switcher-gpt-5-2-pro".
    """
    base = re.sub(r"\s+", " ", target.strip().lower())
    collapsed = base.replace(" ", "")
    dotless = base.replace(".", "")
    labels = _unique(
        normalize_label(value)
        for value in (
            base,
            collapsed,
            dotless,
            f"chatgpt {base}",
            f"chatgpt {dotless}",
            f"gpt {base}",
            f"gpt {dotless}",
        )
    )
    hyphenated = re.sub(r"[^a-z0-9]+", "-", base).strip("-")
    test_ids = _unique(
        (
            hyphenated,
            collapsed,
            dotless.replace(" ", "-"),
            f"model-switcher-{hyphenated}",
            f"model-switcher-{collapsed}",
        )
    )
    return ModelMatchers(labels=labels or (base,), test_ids=test_ids)


def match_model_option(options: list[MenuOption], target: str) -> MenuOption | None:
    """
    Pick the menu option for target: exact label, then substring, then test id.

    Options are checked in menu order within each pass, so the first entry
    wins ties.
    """
    matchers = build_model_matchers(target)
    normalized = [(option, normalize_label(option.label)) for option in options]

    for option, label in normalized:
        if label and label in matchers.labels:
            return option
    for option, label in normalized:
        if label and any(token in label for token in matchers.labels):
            return option
    for option in options:
        test_id = option.test_id.lower()
        if test_id and any(token in test_id for token in matchers.test_ids):
            return option
    return None


async def read_current_model(session: ProtocolSession) -> str | None:
    """Label shown on the model switcher button, if any."""
    label = await session.evaluate(CURRENT_MODEL_SCRIPT)
    return label if isinstance(label, str) and label else None


async def ensure_model_selection(
    session: ProtocolSession,
    desired_model: str | None,
    *,
    strategy: str = "select",
    diagnostics: bool = False,
) -> ModelSelectionOutcome:
    """
    Apply the model strategy.

    Raises:
        ElementNotFoundError: If the switcher or the desired option is missing
            (strategy "select" only)
    """
    if strategy == "ignore":
        logger.debug("Model picker: ignored (strategy=ignore)")
        return ModelSelectionOutcome(status="skipped")

    if strategy == "current" or not desired_model:
        label = await read_current_model(session)
        logger.info(f"Model picker: {label or 'unknown'} (current)")
        return ModelSelectionOutcome(status="current", label=label)

    options = await open_menu(session, MODEL_BUTTON_SELECTORS)
    if options is None:
        snapshot = await maybe_capture(
            session, "model-switcher-button", enabled=diagnostics, stage="model-selection"
        )
        raise ElementNotFoundError(
            "Unable to locate the ChatGPT model selector button.",
            stage="model-selection",
            snapshot=snapshot,
        )

    option = match_model_option(options, desired_model)
    if option is None:
        snapshot = await maybe_capture(
            session,
            "model-switcher-option",
            enabled=diagnostics,
            stage="model-selection",
            extras={"options": [o.label for o in options]},
        )
        raise ElementNotFoundError(
            f'Unable to find model option matching "{desired_model}" in the model switcher.',
            stage="model-selection",
            details={"options": [o.label for o in options]},
            snapshot=snapshot,
        )

    if option.selected:
        # Clicking the active entry just closes the menu.
        await click_option(session, option)
        logger.info(f"Model picker: {option.label} (already selected)")
        return ModelSelectionOutcome(status="already-selected", label=option.label)

    if not await click_option(session, option):
        raise ElementNotFoundError(
            f'Model option "{option.label}" disappeared before it could be clicked.',
            stage="model-selection",
        )
    logger.info(f"Model picker: {option.label}")
    return ModelSelectionOutcome(status="switched", label=option.label)
