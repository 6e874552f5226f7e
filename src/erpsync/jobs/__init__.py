"""
Sync job tracking.
"""

from .tracker import JobTracker

__all__ = ["JobTracker"]
