"""
Structured JSON logging for browser-oracle.

Every module logs through the standard library with
``logger = logging.getLogger(__name__)``. setup_logging() installs a single
stderr handler that renders records as JSON and scrubs anything that looks
like a credential before it is written.

Browser automation handles session cookies and bearer tokens, so redaction
covers more than API keys:
- ``Cookie:`` / ``Set-Cookie:`` header values
- ``__Secure-*`` / ``session-token`` style cookie assignments
- Bearer tokens and ``sk-`` keys
- any long opaque token

Examples:
    >>> from browser_oracle.utils.logging import setup_logging, log_with_context
    >>> setup_logging(verbose=True)
    >>> logger = logging.getLogger("browser_oracle.browser.cookies")
    >>> log_with_context(logger, logging.INFO, "Cookies applied", context={"applied": 4})

stdout is reserved for the CLI's user-facing output.
"""

import json
import logging
import re
import sys
from typing import Any

from browser_oracle.utils.time import utc_timestamp


class JSONFormatter(logging.Formatter):
    """
    Render a LogRecord as one JSON object per line.

    Fields: timestamp, level, component, message, plus ``context`` and
    ``run_id`` when supplied through ``extra``, and ``exception`` when the
    record carries exc_info.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": utc_timestamp(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "context") and isinstance(record.context, dict):
            log_entry["context"] = record.context

        if hasattr(record, "run_id"):
            log_entry["run_id"] = record.run_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class SecretRedactingFilter(logging.Filter):
    """
    Scrub credentials from log messages, args and context dicts.

    Redacted values keep their last four characters so two log lines can
    still be correlated:
        "Cookie: __Secure-next-auth.session-token=eyJhbGciOi..." ->
        "Cookie: ***Oi.."
    """

    SECRET_PATTERNS = [
        (re.compile(r"(?i)\b(set-)?cookie:\s*[^\n]+"), "cookie: ***{last4}"),
        (
            re.compile(r"(?i)\b[\w.-]*(session|token|auth)[\w.-]*=[^;\s]{8,}"),
            "***{last4}",
        ),
        (re.compile(r"\bsk-[a-zA-Z0-9_-]{20,}\b"), "sk-...{last4}"),
        (re.compile(r"\bBearer\s+[a-zA-Z0-9_.-]{20,}\b"), "Bearer ***{last4}"),
        (re.compile(r"\b[a-zA-Z0-9_-]{40,}\b"), "***{last4}"),
    ]

    # Context keys whose values are always secret, regardless of shape.
    SECRET_KEYS = frozenset({"value", "cookie", "cookies", "password", "token"})

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._redact_secrets(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_secrets(str(v)) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    self._redact_secrets(str(arg)) for arg in record.args
                )

        if hasattr(record, "context") and isinstance(record.context, dict):
            record.context = self._redact_dict(record.context)

        return True

    def _redact_secrets(self, text: str) -> str:
        for pattern, template in self.SECRET_PATTERNS:

            def redact_match(match: re.Match) -> str:
                return template.format(last4=match.group(0)[-4:])

            text = pattern.sub(redact_match, text)

        return text

    def _redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if key.lower() in self.SECRET_KEYS and value not in (None, ""):
                result[key] = "***"
            elif isinstance(value, str):
                result[key] = self._redact_secrets(value)
            elif isinstance(value, dict):
                result[key] = self._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    self._redact_secrets(v) if isinstance(v, str) else v for v in value
                ]
            else:
                result[key] = value
        return result


def setup_logging(verbose: bool = False, quiet_logs: bool = False) -> None:
    """
    Configure the root logger with the JSON handler.

    Args:
        verbose: DEBUG level when True, INFO otherwise. DEBUG also turns on
            DOM diagnostic snapshots in the browser engine.
        quiet_logs: Only WARNING and above reach stderr (used in the CLI's
            human mode so JSON lines do not interleave with rich output).
            Ignored when verbose is set.
    """
    root_logger = logging.getLogger()

    if verbose:
        level = logging.DEBUG
    elif quiet_logs:
        level = logging.WARNING
    else:
        level = logging.INFO

    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SecretRedactingFilter())

    root_logger.addHandler(handler)


def get_logger(component: str) -> logging.Logger:
    """
    Get a named logger sharing the setup_logging() configuration.

    Example:
        >>> get_logger("browser_oracle.run").info("Driving chatgpt")
    """
    return logging.getLogger(component)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    context: dict[str, Any] | None = None,
    run_id: str | None = None,
) -> None:
    """
    Log a message with a structured context dict and optional run id.

    Example:
        >>> log_with_context(
        ...     logger,
        ...     logging.INFO,
        ...     "Prompt committed",
        ...     context={"turns": 2, "chars": 512},
        ...     run_id="2025-11-02T08-30-00Z",
        ... )
    """
    extra = {}

    if context is not None:
        extra["context"] = context

    if run_id is not None:
        extra["run_id"] = run_id

    logger.log(level, message, extra=extra if extra else None)
