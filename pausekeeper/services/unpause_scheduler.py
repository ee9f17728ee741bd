"""
Scheduling of forced unpauses.

When a poll interval is configured every paused resource is unpaused
again after roughly that interval. A random jitter is added at pause
time so resources paused together do not all come back together.
"""

import math
import random
from datetime import datetime, timedelta
from typing import Optional

from pausekeeper.models.constants import UNPAUSE_JITTER_FACTOR


def compute_jitter(poll_interval: timedelta, rng: Optional[random.Random] = None) -> timedelta:
    """Draw a jitter uniformly from [0, UNPAUSE_JITTER_FACTOR * poll_interval)."""
    if poll_interval <= timedelta(0):
        raise ValueError(f"poll_interval must be positive, got {poll_interval}")
    
    draw = (rng or random).random()
    bound_us = poll_interval // timedelta(microseconds=1) * UNPAUSE_JITTER_FACTOR
    # Whole microseconds strictly below the bound, even when the product rounds up.
    largest_us = max(math.ceil(bound_us) - 1, 0)
    return timedelta(microseconds=min(int(bound_us * draw), largest_us))


def compute_scheduled_unpause_time(
    pause_time: datetime,
    poll_interval: timedelta,
    rng: Optional[random.Random] = None
) -> datetime:
    """
    Compute when a resource paused at pause_time must be unpaused.
    
    Args:
        pause_time: When the resource was paused
        poll_interval: Configured maximum pause dwell time
        rng: Random source, injectable for deterministic tests
        
    Returns:
        pause_time + poll_interval + jitter
    """
    return pause_time + poll_interval + compute_jitter(poll_interval, rng)
