"""Exception hierarchy shared by the indexing components."""

from __future__ import annotations


class DuskError(Exception):
    """Base class for all dusk errors."""
