# =============================================================================
# File: huddle/rsvp/ports/status_renderer_port.py
# Description: Port interface for re-rendering a match's RSVP status message
# Pattern: Hexagonal Architecture / Ports & Adapters
# =============================================================================

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class StatusRendererPort(Protocol):
    """
    Port: Status Renderer

    Defined by: RSVP domain
    Implemented by: the bot's embed/thread service

    The renderer owns the presentation of the status message. The reconciler
    only asks it to redraw from the current store contents.
    """

    async def rerender_status(self, event_id: str, thread_id: str) -> None:
        """Redraw the status message in thread_id from the store's view of event_id."""
        ...
