"""Sender side helpers."""

from .remote import SceneClient, Transport, websocket_transport

__all__ = ["SceneClient", "Transport", "websocket_transport"]
