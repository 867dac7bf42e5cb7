"""Structured JSON logging with request/event context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from gamecloud.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
server_id_ctx: ContextVar[str] = ContextVar("server_id", default="")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.event_id = event_id_ctx.get()
        record.server_id = server_id_ctx.get()
        return True


_context_filter = ContextFilter()


def configure_logging() -> None:
    """Install the JSON stdout handler on the root logger.

    Safe to call more than once; earlier JSON handlers are replaced, foreign
    handlers are left in place.
    """

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(event_id)s %(server_id)s %(message)s"
    )
    handler.setFormatter(formatter)
    handler.set_name("gamecloud-json")

    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if h.get_name() != "gamecloud-json"] + [handler]
    root.setLevel(settings.log_level)
    if _context_filter not in root.filters:
        root.addFilter(_context_filter)


logger = logging.getLogger("gamecloud")
