"""
Health Code Schema
==================

Bounded Context: Health Reporting

One ordered severity scale shared by every health source, so the worst code
is simply the minimum.
"""

from enum import IntEnum


class HealthCode(IntEnum):
    """
    Ordered health classification: CRITICAL < WARNING < GOOD.

    Example:
        >>> min(HealthCode.GOOD, HealthCode.WARNING)
        <HealthCode.WARNING: 1>
    """
    CRITICAL = 0
    WARNING = 1
    GOOD = 2
