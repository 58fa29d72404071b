"""Statistics for the connection manager.

Extracted from manager.py for modularity.
"""

from __future__ import annotations


class ConnectionStats:
    """Estadísticas del manager de conexión."""

    def __init__(self):
        self.frames_received = 0
        self.frames_malformed = 0
        self.messages_dispatched = 0
        self.messages_published = 0
        self.messages_buffered = 0
        self.connects = 0
        self.disconnects = 0
        self.last_message_at: float = 0

    def __str__(self) -> str:
        return (
            f"Stats: received={self.frames_received} malformed={self.frames_malformed} "
            f"dispatched={self.messages_dispatched} published={self.messages_published} "
            f"buffered={self.messages_buffered}"
        )

    def to_dict(self) -> dict:
        """Convert stats to dictionary."""
        return {
            "frames_received": self.frames_received,
            "frames_malformed": self.frames_malformed,
            "messages_dispatched": self.messages_dispatched,
            "messages_published": self.messages_published,
            "messages_buffered": self.messages_buffered,
            "connects": self.connects,
            "disconnects": self.disconnects,
            "last_message_at": self.last_message_at,
        }
