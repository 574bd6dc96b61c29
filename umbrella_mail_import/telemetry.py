"""Per-run counters and timers, flushed as a single structlog event."""

from __future__ import annotations

import time
from typing import Any

import structlog

logger = structlog.get_logger()


class ImportTelemetry:
    """Counter/timer accumulator for one stage run.

    Nothing is logged until :meth:`emit`, which writes one
    ``import_telemetry`` event carrying every counter and elapsed timing.
    """

    def __init__(self, event: str, **fields: Any) -> None:
        self.event = event
        self.fields = fields
        self.counters: dict[str, int] = {}
        self.timings: dict[str, float] = {}
        self._started: dict[str, float] = {}

    def increment(self, name: str, by: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + by

    def start_timer(self, name: str) -> None:
        self._started[name] = time.monotonic()

    def stop_timer(self, name: str) -> float:
        """Stop *name* and return the elapsed seconds (0.0 if never started)."""
        started = self._started.pop(name, None)
        if started is None:
            return 0.0
        elapsed = time.monotonic() - started
        self.timings[name] = self.timings.get(name, 0.0) + elapsed
        return elapsed

    def emit(self) -> None:
        for name in list(self._started):
            self.stop_timer(name)
        logger.info(
            "import_telemetry",
            telemetry_event=self.event,
            counters=dict(self.counters),
            timings={k: round(v, 6) for k, v in self.timings.items()},
            **self.fields,
        )
