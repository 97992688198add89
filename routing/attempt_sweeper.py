import threading

from routing.fallback_manager import FallbackManager
from utils.logger import get_logger, log_fields

logger = get_logger(__name__)


class AttemptSweeper:
    """
    Background ticker that drops stale fallback states.

    Fallback states are only removed by ``record_success``; requests that
    end without it would otherwise stay in memory forever.
    """

    def __init__(
        self,
        manager: FallbackManager,
        interval_seconds: float = 60.0,
        max_age_seconds: float = 300.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._manager = manager
        self._interval = interval_seconds
        self._max_age = max_age_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="fallback-attempt-sweeper", daemon=True
        )
        self._thread.start()
        logger.info(
            "Attempt sweeper started",
            extra=log_fields(interval_seconds=self._interval, max_age_seconds=self._max_age),
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Attempt sweeper stopped")

    def sweep_once(self) -> int:
        return self._manager.cleanup_old_attempts(self._max_age)

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Attempt sweep failed")

    def __enter__(self) -> "AttemptSweeper":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
