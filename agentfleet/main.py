"""
Process entry point: logging setup and the ``agentfleet`` console script.

    python -m agentfleet ask "Summarize README.md"
"""

from __future__ import annotations

import logging
import sys

import structlog

_TRUNCATED_KEYS = ("prompt", "result", "line", "content")
_MAX_DISPLAY_LEN = 120


def _truncate_long_fields(logger, method_name, event_dict):
    """Structlog processor that shortens prompt/response text in log lines.

    Agent turns can run to megabytes; the log needs a hint of the text, not
    the text.
    """
    for key in _TRUNCATED_KEYS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_DISPLAY_LEN:
            event_dict[key] = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(level: int = logging.WARNING) -> None:
    """Configure structlog over stdlib logging, writing to stderr.

    Safe to call more than once; later calls only adjust the level. stdout is
    left alone so command output stays machine-readable.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        logging.getLogger().setLevel(level)
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level, stream=sys.stderr)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _truncate_long_fields,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    from agentfleet.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
