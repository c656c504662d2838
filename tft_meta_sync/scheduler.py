"""Fixed-cadence refresh loop.

Calls ``SyncOrchestrator.refresh_all`` every ``interval_minutes`` until
stopped with Ctrl-C / SIGTERM or ``stop()``.  A failed cycle is logged and the
loop carries on; the next cycle runs on schedule.

Typical usage via the CLI::

    tft-meta-sync start-scheduler --interval 30

Or directly::

    async with build_orchestrator(config) as orch:
        await SyncScheduler(orch, interval_minutes=60).start()
"""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime, timedelta
from typing import Optional

from tft_meta_sync.models.sync_run import SyncRun
from tft_meta_sync.sync.orchestrator import SyncOptions, SyncOrchestrator

log = logging.getLogger(__name__)


class SyncScheduler:
    """Runs ``refresh_all`` on a fixed interval.

    Parameters
    ----------
    orchestrator:
        The orchestrator to refresh.
    interval_minutes:
        Minutes between the start of one cycle and the start of the next wait.
    run_on_start:
        When *False*, wait one interval before the first cycle.
    options:
        Options forwarded to every ``refresh_all`` (source, patch).
    install_signal_handlers:
        Stop on SIGINT/SIGTERM.  Tests turn this off.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_minutes: int = 60,
        run_on_start: bool = True,
        options: Optional[SyncOptions] = None,
        install_signal_handlers: bool = True,
    ) -> None:
        if interval_minutes < 1:
            raise ValueError(f"interval_minutes must be >= 1, got {interval_minutes}.")
        self.orchestrator = orchestrator
        self.interval_seconds = interval_minutes * 60.0
        self.run_on_start = run_on_start
        self.options = options
        self.install_signal_handlers = install_signal_handlers
        self.cycles_run = 0
        self.cycles_failed = 0
        self._stop: Optional[asyncio.Event] = None

    # ── Jobs ──────────────────────────────────────────────────────────────────

    async def run_once(self) -> Optional[SyncRun]:
        """Run one refresh cycle.  Returns ``None`` if the cycle raised."""
        log.info("=== Refresh cycle starting at %s ===", datetime.now().isoformat(timespec="seconds"))
        self.cycles_run += 1
        try:
            run = await self.orchestrator.refresh_all(self.options, trigger="scheduler")
        except Exception as exc:
            self.cycles_failed += 1
            log.error("Refresh cycle failed: %s", exc, exc_info=True)
            return None
        log.info("Refresh cycle finished: %s", run.status)
        return run

    # ── Main loop ─────────────────────────────────────────────────────────────

    def stop(self) -> None:
        """Ask the loop to exit after the current cycle."""
        log.info("Stop requested; scheduler will exit.")
        if self._stop is not None:
            self._stop.set()

    @property
    def running(self) -> bool:
        return self._stop is not None and not self._stop.is_set()

    async def start(self, max_cycles: Optional[int] = None) -> None:
        """Run until stopped (or ``max_cycles`` cycles have completed)."""
        self._stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        if self.install_signal_handlers:
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.add_signal_handler(sig, self.stop)
                    installed.append(sig)
                except (NotImplementedError, RuntimeError):
                    # Windows event loops have no add_signal_handler.
                    pass

        log.info(
            "Scheduler started.  interval=%.0fs  run_on_start=%s",
            self.interval_seconds, self.run_on_start,
        )
        try:
            if not self.run_on_start:
                await self._pause(self.interval_seconds)

            completed = 0
            while not self._stop.is_set():
                await self.run_once()
                completed += 1
                if max_cycles is not None and completed >= max_cycles:
                    break
                next_run = datetime.now() + timedelta(seconds=self.interval_seconds)
                log.info("Next cycle scheduled: %s", next_run.isoformat(timespec="seconds"))
                await self._pause(self.interval_seconds)
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            self._stop.set()

        log.info("Scheduler stopped after %d cycle(s).", self.cycles_run)

    async def _pause(self, seconds: float) -> None:
        assert self._stop is not None
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
