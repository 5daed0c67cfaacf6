# universal/global_clock.py
from __future__ import annotations

import datetime
import logging
import threading
import time
from typing import Callable, List

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class GlobalClock:
    """Shared simulation clock.

    Keeps the current time as whole seconds (the timestamp every crossing
    request is evaluated against), advances by a time multiplier,
    and notifies registered listeners whenever it moves.
    Time never goes backwards.
    """

    def __init__(self, start_timestamp: int = 0):
        if start_timestamp < 0:
            raise ValueError("start_timestamp must not be negative")
        self.current_timestamp = int(start_timestamp)
        self.time_multiplier = 1.0
        self.tick_interval = 1.0
        self.running = False
        self._remainder = 0.0
        self._lock = threading.Lock()
        self._listeners: List[Callable[[int], None]] = []

    # ---- core time control ----
    def timestamp(self) -> int:
        return self.current_timestamp

    def advance(self, seconds: float) -> int:
        """Move simulated time forward and notify listeners."""
        if seconds < 0:
            raise ValueError(f"Cannot move clock backwards by {seconds}s")
        with self._lock:
            # fractional seconds carry over so slow multipliers still add up
            total = self._remainder + seconds
            whole = int(total)
            self._remainder = total - whole
            self.current_timestamp += whole
            now = self.current_timestamp
        if whole:
            self._notify(now)
        return now

    def tick(self) -> int:
        """Advance simulated time by (tick_interval × multiplier)."""
        return self.advance(self.tick_interval * self.time_multiplier)

    def run(self):
        """Continuously tick every real tick_interval seconds."""
        self.running = True
        while self.running:
            self.tick()
            time.sleep(self.tick_interval)

    def stop(self):
        """Leave the continuous run loop."""
        self.running = False

    def pause(self):
        self.running = False

    def resume(self):
        self.running = True

    def set_speed(self, multiplier: float):
        """
        Set how fast simulation time advances.
        multiplier = 1.0 → real time
        multiplier = 10.0 → 10× faster
        multiplier = 0.0 → frozen (same as pause)
        """
        if multiplier < 0:
            multiplier = 0.0
        self.time_multiplier = multiplier
        logger.info("Clock speed set to %s×", multiplier)

    # ---- listeners + info ----
    def register_listener(self, callback: Callable[[int], None]):
        """Module (like the crossing console) calls once to receive time updates."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def _notify(self, now: int):
        for cb in list(self._listeners):
            try:
                cb(now)
            except Exception:
                logger.exception("Clock listener %r failed", cb)

    def get_time_string(self) -> str:
        return str(datetime.timedelta(seconds=self.current_timestamp))

    def __repr__(self):
        return f"GlobalClock({self.get_time_string()})"

# Shared singleton
clock = GlobalClock()
