from __future__ import annotations

from typing import Final

# Minimum number of signals behind any aggregate value. Not configurable.
K_ANONYMITY_THRESHOLD: Final = 5

# Signals younger than this are not eligible for aggregate inclusion.
SIGNAL_DELAY_SECONDS: Final = 300

FRESHNESS_WINDOW_HOURS: Final = 24
# stale up to FRESHNESS_WINDOW_HOURS * STALE_MULTIPLIER, dormant beyond
STALE_MULTIPLIER: Final = 3

VELOCITY_WINDOW_SECONDS: Final = 7 * 24 * 3600
VELOCITY_DELTA_POINTS: Final = 5
