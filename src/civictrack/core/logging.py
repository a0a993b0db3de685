"""structlog setup shared by the CLI and library callers.

Call :func:`configure_logging` once; modules log through
``structlog.get_logger()`` with snake_case event names and keyword fields.
Error text often carries citizen-supplied input, so every event passes
through :func:`_redaction_processor` before it is rendered.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping, MutableMapping
from typing import Any

import structlog

from civictrack.modules.notes_guard import redact_pii

_SUPPRESSED_KEYS = frozenset({"key", "secret", "password", "token", "credential", "authorization"})

# Libraries whose debug chatter drowns out workflow events.
_QUIET_LOGGERS = ("asyncio",)


def _redaction_processor(
    _logger: Any,
    _method: str,
    event_dict: MutableMapping[str, Any],
) -> Mapping[str, Any]:
    """Blank secret-named fields and scrub contact details from string values."""
    for k, v in event_dict.items():
        if k in _SUPPRESSED_KEYS:
            event_dict[k] = "[SUPPRESSED]"
        elif isinstance(v, str):
            event_dict[k] = redact_pii(v)
    return event_dict


def _pre_chain() -> list[structlog.types.Processor]:
    # Shared by structlog events and foreign stdlib records; redaction runs last.
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        _redaction_processor,
    ]


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(*, level: str = "INFO", json_output: bool = True) -> None:
    """Install one stderr handler on the root logger and point structlog at it.

    Safe to call again: the previous handler is replaced, not stacked.

    Parameters
    ----------
    level:
        Name of the root level, case-insensitive.  Unknown names fall back
        to ``INFO``.
    json_output:
        JSON lines when true (the ``CIVIC_LOG_JSON`` default); otherwise the
        console renderer, coloured only on a terminal.
    """
    pre_chain = _pre_chain()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_output),
            ],
            foreign_pre_chain=pre_chain,
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
