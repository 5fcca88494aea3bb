"""ORM models exposed by the Stamp application."""
from .entry import Entry
from .pending_change import PendingChange

__all__ = ["Entry", "PendingChange"]
