"""
Structured logging and request correlation.

Every log record is rendered as a single JSON line carrying the service
name plus the fields of the ambient span (``request_id`` and friends), so
all lines emitted while handling one request can be correlated.

Usage:
    subscriber = get_subscriber("newsletter", "info", sys.stdout)
    init_subscriber(subscriber)          # once per process

    with span("Adding a new subscriber", request_id=str(uuid4())):
        logger.info("...")               # carries request_id

The filter spec is taken from ``LOG_LEVEL`` when set, e.g.
``LOG_LEVEL=info,sqlalchemy.engine=warning,newsletter=debug``.
"""

import logging
import os
import sys
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, TextIO

from pythonjsonlogger.json import JsonFormatter

LOG_FILTER_VARIABLE = "LOG_LEVEL"

LOG_FIELDS = ("asctime", "levelname", "name", "message")

FIELD_RENAME_MAP = {
    "asctime": "timestamp",
    "levelname": "level",
    "name": "logger",
}

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Fields of the innermost active span, isolated per asyncio task
_span_fields: ContextVar[dict[str, Any]] = ContextVar("span_fields", default={})

_install_lock = threading.Lock()
_installed: "Subscriber | None" = None

logger = logging.getLogger(__name__)


class SubscriberAlreadyInstalledError(RuntimeError):
    """Raised when a second global subscriber is installed."""


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------

class EnvFilter(logging.Filter):
    """
    Level filter driven by a directive string.

    ``"warn,newsletter=debug"`` lets everything at WARNING and above through,
    and everything from the ``newsletter`` logger subtree at DEBUG and above.
    The longest matching logger prefix wins.
    """

    def __init__(self, spec: str) -> None:
        super().__init__()
        self.default_level = logging.ERROR
        self.directives: dict[str, int] = {}

        for directive in filter(None, (part.strip() for part in spec.split(","))):
            target, _, level = directive.rpartition("=")
            parsed = _parse_level(level)
            if target:
                self.directives[target.strip()] = parsed
            else:
                self.default_level = parsed

    @property
    def min_level(self) -> int:
        return min([self.default_level, *self.directives.values()])

    def level_for(self, name: str) -> int:
        best, best_len = self.default_level, -1
        for target, level in self.directives.items():
            if (name == target or name.startswith(target + ".")) and len(target) > best_len:
                best, best_len = level, len(target)
        return best

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= self.level_for(record.name)


class SpanFieldsFilter(logging.Filter):
    """
    Injects ``service`` and the ambient span fields into each record.

    Values passed explicitly via ``extra`` are preserved.
    """

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self._service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _span_fields.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        record.service = self._service_name
        return True


def _parse_level(raw: str) -> int:
    try:
        return _LEVELS[raw.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Invalid log level: {raw!r}. Valid: {', '.join(sorted(_LEVELS))}"
        ) from None


def create_json_formatter() -> JsonFormatter:
    """JSON formatter producing timestamp, level, logger and message plus extras."""
    return JsonFormatter(
        " ".join(f"%({field})s" for field in LOG_FIELDS),
        rename_fields=FIELD_RENAME_MAP,
    )


# ---------------------------------------------------------------------------
# Subscriber
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Subscriber:
    """A configured log sink, ready to be installed process-wide."""

    name: str
    handler: logging.Handler
    env_filter: EnvFilter


def get_subscriber(name: str, env_filter: str, sink: TextIO | None = None) -> Subscriber:
    """
    Build the structured log sink.

    Args:
        name: Service name attached to every record.
        env_filter: Fallback filter spec used when ``LOG_LEVEL`` is unset.
        sink: Stream to write JSON lines to. Defaults to stdout.

    Raises:
        ValueError: If the filter spec names an unknown level.
    """
    level_filter = EnvFilter(os.getenv(LOG_FILTER_VARIABLE) or env_filter)

    handler = logging.StreamHandler(sink if sink is not None else sys.stdout)
    handler.setFormatter(create_json_formatter())
    handler.addFilter(level_filter)
    handler.addFilter(SpanFieldsFilter(name))

    return Subscriber(name=name, handler=handler, env_filter=level_filter)


def init_subscriber(subscriber: Subscriber) -> None:
    """
    Install *subscriber* as the process-wide log sink.

    Raises:
        SubscriberAlreadyInstalledError: If a subscriber was already installed.
    """
    global _installed

    with _install_lock:
        if _installed is not None:
            raise SubscriberAlreadyInstalledError(
                f"A global log subscriber ('{_installed.name}') is already installed"
            )

        root = logging.getLogger()
        root.setLevel(subscriber.env_filter.min_level)
        root.handlers = [subscriber.handler]
        _installed = subscriber


# ---------------------------------------------------------------------------
# Spans
# ---------------------------------------------------------------------------

@contextmanager
def span(name: str, **fields: Any) -> Iterator[None]:
    """
    Attach *fields* to every record logged inside the block.

    Emits ``[NAME - START]`` on entry and ``[NAME - END]`` with
    ``elapsed_milliseconds`` on exit. Nested spans inherit their parent's fields.
    """
    token = _span_fields.set({**_span_fields.get(), **fields})
    label = name.upper()
    started = time.perf_counter()
    logger.info("[%s - START]", label)
    try:
        yield
    finally:
        elapsed = int((time.perf_counter() - started) * 1000)
        logger.info("[%s - END]", label, extra={"elapsed_milliseconds": elapsed})
        _span_fields.reset(token)


def current_span_fields() -> dict[str, Any]:
    """Fields of the innermost active span (empty outside any span)."""
    return dict(_span_fields.get())
