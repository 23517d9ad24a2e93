"""
Reaper module.
Contains the supervisor that recovers orphaned claims.
"""

from leasequeue.reaper.main import Reaper, run

__all__ = ["Reaper", "run"]
