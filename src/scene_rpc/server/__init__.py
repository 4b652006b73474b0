"""Receiver side: request processing, handler registry and serving adapter."""

from .processor import MessageProcessor, ProcessorStats
from .registry import HandlerRegistration, HandlerRegistry, MessageHandler

__all__ = [
    "HandlerRegistration",
    "HandlerRegistry",
    "MessageHandler",
    "MessageProcessor",
    "ProcessorStats",
]
