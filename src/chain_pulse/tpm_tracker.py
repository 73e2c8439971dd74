#!/usr/bin/env python3
"""Sliding-window transactions-per-minute tracking.

The tracker keeps two logs bounded by the retention window: the raw
acceptance timestamps, and one TPMSample per acceptance. Both are kept in
insertion order and pruned on every insertion; there is no background timer.
Timestamps are not assumed to be monotonic, since the wall clock can step
backwards.
"""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

from .models import TPMSample, TPMStatistics

# Get logger for this module
logger = logging.getLogger(__name__)


class TPMWindowTracker:
    """Maintains the acceptance history and derived TPM samples.
    
    Mutation and queries are serialized by a lock, since the prune-then-append
    sequence is not safe under concurrent access and queries may arrive from
    the HTTP server's worker threads.
    """
    
    def __init__(
        self,
        rate_window: float = 60.0,
        retention_window: float = 3600.0,
        clock: Callable[[], float] = time.time
    ) -> None:
        """Initialize the tracker.
        
        Args:
            rate_window: Trailing window in seconds used for the current TPM
            retention_window: Seconds of history kept for statistics
            clock: Source of "now" when callers do not pass a timestamp
        """
        if rate_window <= 0 or retention_window <= 0:
            raise ValueError("Window durations must be positive")
        
        self.rate_window = rate_window
        self.retention_window = retention_window
        self._clock = clock
        
        self._history: deque[float] = deque()
        self._samples: deque[TPMSample] = deque()
        self._lock = threading.Lock()
    
    def record_acceptance(self, now: float | None = None) -> TPMSample:
        """Record one accepted transaction and append the resulting sample.
        
        Args:
            now: Acceptance timestamp in seconds (defaults to the clock)
            
        Returns:
            The TPMSample appended for this acceptance
        """
        now = self._clock() if now is None else now
        cutoff = now - self.retention_window
        
        with self._lock:
            self._history.append(now)
            self._history = deque(t for t in self._history if t >= cutoff)

            sample = TPMSample(tpm=self._count_in_rate_window(now), timestamp=now)
            self._samples.append(sample)
            self._samples = deque(s for s in self._samples if s.timestamp >= cutoff)
        
        return sample
    
    def current_tpm(self, now: float | None = None) -> int:
        """Count acceptances within [now - rate_window, now]."""
        now = self._clock() if now is None else now
        with self._lock:
            return self._count_in_rate_window(now)
    
    def statistics(self, now: float | None = None) -> TPMStatistics:
        """Compute high/low/current and the change against the earliest sample.
        
        The baseline for change_last_hour_pct is the first retained sample,
        not one taken exactly a retention window ago.
        """
        now = self._clock() if now is None else now
        cutoff = now - self.retention_window
        
        with self._lock:
            recent = [s for s in self._samples if s.timestamp >= cutoff]
            current = self._count_in_rate_window(now)
        
        if not recent:
            return TPMStatistics(high=None, low=None, current=current, change_last_hour_pct=0.0)
        
        values = [s.tpm for s in recent]
        baseline = recent[0].tpm
        change = (current - baseline) / baseline if baseline else 0.0
        
        return TPMStatistics(
            high=max(values),
            low=min(values),
            current=current,
            change_last_hour_pct=change
        )
    
    def samples(self) -> list[TPMSample]:
        """Snapshot of the retained samples, in insertion order."""
        with self._lock:
            return list(self._samples)
    
    def history(self) -> list[float]:
        """Snapshot of the retained acceptance timestamps, in insertion order."""
        with self._lock:
            return list(self._history)
    
    def _count_in_rate_window(self, now: float) -> int:
        # Timestamps are in insertion order, which need not be chronological
        cutoff = now - self.rate_window
        return sum(1 for timestamp in self._history if cutoff <= timestamp <= now)
