# =============================================================================
# File: huddle/rsvp/ports/match_data_port.py
# Description: Port interface for the external match-data service
# Pattern: Hexagonal Architecture / Ports & Adapters
# =============================================================================

from __future__ import annotations

from typing import List, Protocol, runtime_checkable

from huddle.rsvp.models import RosterMember


@runtime_checkable
class MatchDataPort(Protocol):
    """
    Port: Match Data

    Defined by: RSVP domain
    Implemented by: the match-data HTTP client (outside this package)
    """

    async def list_roster_members(self) -> List[RosterMember]:
        """The team roster: every member who should answer an RSVP."""
        ...

    async def list_upcoming_event_ids(self) -> List[str]:
        """Ids of matches that have not been played yet."""
        ...
