"""Turn pipeline facade."""

from .companion import TraceMind, TurnContext

__all__ = ["TraceMind", "TurnContext"]
