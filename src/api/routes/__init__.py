"""Route modules for the Dorandoran chat pipeline API.

HTTP health probes live in health; the chatroom push channel in chat.
"""

from __future__ import annotations

from . import chat, health

__all__ = ["chat", "health"]
