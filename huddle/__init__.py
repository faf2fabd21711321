# =============================================================================
# Huddle Main Package - Dynamic Version Loading
# =============================================================================
"""
Huddle - match RSVP tracking core

Keeps the local RSVP store consistent with the status messages rendered in
per-match chat threads, and rebuilds the store from the interaction journal
and chat history when it is lost.

Version is loaded from installed package metadata (pyproject.toml).
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version


def _get_version() -> str:
    """
    Get package version from installed metadata.

    Returns:
        Version string (e.g., "0.3.0")
    """
    try:
        return version("huddle-rsvp")
    except PackageNotFoundError:
        # Running from a source checkout without an install
        return "0.0.0+local"


__version__: str = _get_version()
__description__: str = "Huddle - match RSVP store, reconciliation and recovery"

__all__ = [
    "__version__",
    "__description__",
]
