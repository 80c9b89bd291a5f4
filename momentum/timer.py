from __future__ import annotations

import logging
import math
import threading
import time
from typing import Callable

from .dates import epoch_ms_to_datetime, round_half_up
from .models import ActiveTimerState, TimerSnapshot, TimerStartInput, TimerStopDetails

logger = logging.getLogger(__name__)

SaveActiveTimer = Callable[[ActiveTimerState | None], None]
TimerListener = Callable[[TimerSnapshot], None]


class TimerService:
    """Owns the single active timer, its persistence and change notifications.

    Every transition updates memory first, notifies listeners, then hands the
    new state to ``save_active_timer``. If saving raises, the previous state is
    restored, listeners are notified again and the error propagates.

    While a timer runs a daemon thread re-notifies listeners every
    ``tick_seconds`` so elapsed-time displays stay current.
    """

    def __init__(
        self,
        save_active_timer: SaveActiveTimer,
        initial_timer: ActiveTimerState | None = None,
        now: Callable[[], int] | None = None,
        tick_seconds: float = 1.0,
    ):
        self._save_active_timer = save_active_timer
        self._active_timer = initial_timer
        self._now = now or _epoch_ms_now
        self._tick_seconds = max(0.01, float(tick_seconds))
        self._listeners: list[TimerListener] = []
        self._lock = threading.Lock()
        self._ticker: threading.Thread | None = None
        self._ticker_stop: threading.Event | None = None
        self._disposed = False
        self._sync_ticker()

    @property
    def is_ticking(self) -> bool:
        return self._ticker is not None and self._ticker.is_alive()

    def get_active_timer(self) -> ActiveTimerState | None:
        return self._active_timer

    def is_running(self) -> bool:
        return self._active_timer is not None

    def get_snapshot(self, now: int | None = None) -> TimerSnapshot:
        current = self._now() if now is None else now
        active_timer = self._active_timer
        elapsed_ms = max(0, current - active_timer.started_at) if active_timer else 0
        return TimerSnapshot(active_timer=active_timer, now=current, elapsed_ms=elapsed_ms)

    def subscribe(self, listener: TimerListener) -> Callable[[], None]:
        """Register ``listener`` and immediately send it the current snapshot."""
        with self._lock:
            self._listeners.append(listener)
        self._emit(listener, self.get_snapshot())

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def start(self, start_input: TimerStartInput) -> bool:
        if self._active_timer is not None:
            return False

        now = self._now()
        requested = start_input.started_at_ms
        started_at = now
        if requested is not None and math.isfinite(requested):
            started_at = min(now, int(requested))

        self._transition(
            None,
            ActiveTimerState(
                project_path=start_input.project_path,
                project_name=start_input.project_name,
                started_at=started_at,
            ),
        )
        return True

    def get_stop_details(self, stopped_at_ms: int | None = None) -> TimerStopDetails | None:
        active_timer = self._active_timer
        if active_timer is None:
            return None

        stopped_at = self._now() if stopped_at_ms is None else stopped_at_ms
        elapsed_ms = max(0, stopped_at - active_timer.started_at)
        return TimerStopDetails(
            active_timer=active_timer,
            started_at=epoch_ms_to_datetime(active_timer.started_at),
            stopped_at=epoch_ms_to_datetime(stopped_at),
            elapsed_ms=elapsed_ms,
            duration_minutes=max(1, round_half_up(elapsed_ms / 60_000)),
        )

    def adjust_start(self, started_at_ms: int | float) -> bool:
        previous = self._active_timer
        if previous is None:
            return False

        now = self._now()
        started_at = min(now, int(started_at_ms)) if math.isfinite(started_at_ms) else now
        self._transition(
            previous,
            ActiveTimerState(
                project_path=previous.project_path,
                project_name=previous.project_name,
                started_at=started_at,
            ),
        )
        return True

    def clear(self) -> ActiveTimerState | None:
        previous = self._active_timer
        if previous is None:
            return None

        self._transition(previous, None)
        return previous

    def dispose(self, timeout_seconds: float = 5.0) -> None:
        with self._lock:
            self._disposed = True
            self._listeners.clear()
        self._stop_ticker(timeout_seconds)

    def _transition(self, previous: ActiveTimerState | None, next_timer: ActiveTimerState | None) -> None:
        self._active_timer = next_timer
        self._sync_ticker()
        self._notify()

        try:
            self._save_active_timer(next_timer)
        except Exception:
            self._active_timer = previous
            self._sync_ticker()
            self._notify()
            raise

    def _sync_ticker(self) -> None:
        if self._active_timer is None:
            self._stop_ticker()
            return

        with self._lock:
            if self._ticker is not None or self._disposed:
                return
            stop_event = threading.Event()
            self._ticker_stop = stop_event
            self._ticker = threading.Thread(
                target=self._run_ticker,
                args=(stop_event,),
                name="momentum-timer-tick",
                daemon=True,
            )
            self._ticker.start()

    def _stop_ticker(self, timeout_seconds: float = 5.0) -> None:
        with self._lock:
            thread = self._ticker
            stop_event = self._ticker_stop
            self._ticker = None
            self._ticker_stop = None
            if stop_event is not None:
                stop_event.set()

        # A listener running on the tick thread may stop its own ticker.
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout_seconds)

    def _run_ticker(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(self._tick_seconds):
            self._notify(stop_event)

    def _notify(self, stop_event: threading.Event | None = None) -> None:
        snapshot = self.get_snapshot()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            if stop_event is not None and stop_event.is_set():
                return
            self._emit(listener, snapshot)

    @staticmethod
    def _emit(listener: TimerListener, snapshot: TimerSnapshot) -> None:
        try:
            listener(snapshot)
        except Exception:  # noqa: BLE001
            logger.exception("Timer listener failed")


def _epoch_ms_now() -> int:
    return int(time.time() * 1000)
