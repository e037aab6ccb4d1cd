"""Gated execution of local actions."""

from .audit import AuditRecord, AuditWriter, JsonlAuditWriter, MemoryAuditWriter
from .dispatcher import CONFIRMATION_REQUIRED, UNSUPPORTED_ACTION, ActionDispatcher
from .handlers import DEFAULT_HANDLERS, Handler, HandlerEnvironment, HandlerOutput

__all__ = [
    "CONFIRMATION_REQUIRED",
    "DEFAULT_HANDLERS",
    "UNSUPPORTED_ACTION",
    "ActionDispatcher",
    "AuditRecord",
    "AuditWriter",
    "Handler",
    "HandlerEnvironment",
    "HandlerOutput",
    "JsonlAuditWriter",
    "MemoryAuditWriter",
]
