# =============================================================================
# File: huddle/common/enums/enums.py
# Description: Shared enumerations
# =============================================================================

from enum import Enum


class RsvpResponse(str, Enum):
    """Attendance answer recorded for a match"""
    YES = "yes"
    NO = "no"


class RsvpCategory(str, Enum):
    """The three groups a roster member falls into for a match"""
    ATTENDING = "attending"
    NOT_ATTENDING = "not_attending"
    NO_RESPONSE = "no_response"


class ThreadKind(str, Enum):
    """Lifecycle of a match thread"""
    UPCOMING = "upcoming"
    CONCLUDED = "concluded"


class JournalEntryType(str, Enum):
    """Kinds of mutating actions written to the interaction journal"""
    RESPONSE_ACTION = "response_action"
    REGISTRATION_ACTION = "registration_action"
    UNLINK_ACTION = "unlink_action"


class Confidence(str, Enum):
    """How much a recovered or parsed value can be trusted"""
    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {
    Confidence.LOW: 0,
    Confidence.MEDIUM: 1,
    Confidence.HIGH: 2,
    Confidence.EXACT: 3,
}


class Evidence(str, Enum):
    """What the extractor found in a thread"""
    NONE = "none"                      # no status message, no RSVP activity
    PARSED = "parsed"                  # status message parsed
    AMBIGUOUS = "ambiguous"            # activity present but unparseable
    NOT_APPLICABLE = "not_applicable"  # concluded match thread


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"
