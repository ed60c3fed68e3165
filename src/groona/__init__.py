"""Groona AI Assistant: intent extraction, model fallback and entity creation.

Importing the package attaches one handler to the ``groona`` logger tree.
``GROONA_LOG_LEVEL`` sets the base level and ``GROONA_LLM_LOG_LEVEL``
overrides it for model traffic on ``groona.llm``, whose events carry their
details (model, provider, status) as ``extra`` fields.
"""
import logging
import os

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class EventFormatter(logging.Formatter):
    """Renders ``extra`` fields after the message as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = sorted((k, v) for k, v in vars(record).items() if k not in _RECORD_ATTRS)
        if fields:
            line += " " + " ".join(f"{k}={v!r}" for k, v in fields)
        return line


def _level(env_var: str, fallback: int) -> int:
    name = (os.getenv(env_var) or "").strip().upper()
    level = logging.getLevelName(name) if name else fallback
    # getLevelName returns a string for unknown names
    return level if isinstance(level, int) else fallback


def _configure_logging() -> None:
    base = _level("GROONA_LOG_LEVEL", logging.INFO)
    package_logger = logging.getLogger("groona")
    if not any(isinstance(h.formatter, EventFormatter) for h in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(EventFormatter("%(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)
    package_logger.setLevel(base)
    logging.getLogger("groona.llm").setLevel(_level("GROONA_LLM_LOG_LEVEL", base))


_configure_logging()
