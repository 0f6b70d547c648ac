"""
Error taxonomy for the town intelligence core.

  NotFound            - unknown town / edge / row
  InvalidInput        - malformed window or season key, out-of-range weight
  StoreFailure        - persistence backend I/O error
  UpstreamUnavailable - demand model provider or text generator failed

Same-category edges are NOT an InvalidInput: upsert_edge returns None.
"""

from __future__ import annotations


class TownIntelError(Exception):
    """Base class for every error raised by the town intelligence core."""


class NotFound(TownIntelError):
    pass


class InvalidInput(TownIntelError, ValueError):
    pass


class StoreFailure(TownIntelError):
    """Backend I/O failed. The original exception is chained as __cause__."""


class UpstreamUnavailable(TownIntelError):
    pass
