"""Background thread that calls RequestOrchestrator.tick() at a fixed interval."""

import logging
import threading

logger = logging.getLogger(__name__)


class Ticker:
    """Daemon timer around orchestrator.tick(). A failing tick is logged and the loop continues."""

    def __init__(self, orchestrator, interval_seconds: float = 3.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self.ticks = 0
        self.errors = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="arc-ticker", daemon=True)
        self._thread.start()
        logger.info("ticker started (interval=%ss)", self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None
        logger.info("ticker stopped after %d tick(s)", self.ticks)

    def run_once(self) -> int:
        """Run one tick; returns the number of transitions committed."""
        try:
            changed = self.orchestrator.tick()
        except Exception:
            self.errors += 1
            logger.exception("tick failed")
            return 0
        self.ticks += 1
        return len(changed)

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()
