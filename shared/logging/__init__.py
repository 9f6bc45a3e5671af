"""Structured logging module using structlog."""

from .structured_logger import bind_context, bind_target, clear_context, configure_logging, get_logger

__all__ = ["bind_context", "bind_target", "clear_context", "configure_logging", "get_logger"]
