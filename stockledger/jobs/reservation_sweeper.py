"""
Periodic reservation expiry.

Runs inside the API process (started from the app lifespan) or standalone:

    python -m stockledger.jobs.reservation_sweeper          # loop forever
    python -m stockledger.jobs.reservation_sweeper --once   # single pass
"""
import argparse
import logging
import traceback
from threading import Event, Thread
from typing import Callable

from sqlalchemy.orm import Session

from stockledger.core.config import settings
from stockledger.core.observability import log_event, setup_observability
from stockledger.db.session import SessionLocal
from stockledger.services.reservation_service import SweepResult, sweep_expired

logger = logging.getLogger("stockledger.jobs")


def run_sweep(session_factory: Callable[[], Session] = SessionLocal, **kwargs) -> SweepResult:
    db = session_factory()
    try:
        result = sweep_expired(db, **kwargs)
    finally:
        db.close()
    log_event(
        "reservation.sweep.completed",
        log=logger,
        total_expired=result.total_expired,
        total_released=result.total_released,
        total_failed=result.total_failed,
    )
    return result


class ReservationSweeper:
    def __init__(
        self,
        *,
        interval_seconds: float | None = None,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else settings.reservation_sweep_interval_seconds
        )
        self._session_factory = session_factory
        self._stop = Event()
        self._thread: Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> SweepResult | None:
        """One sweep. A crashed tick is logged and the loop keeps going."""
        try:
            return run_sweep(self._session_factory)
        except Exception as exc:
            log_event(
                "reservation.sweep.failed",
                level=logging.ERROR,
                log=logger,
                error_type=type(exc).__name__,
                error=str(exc),
                traceback=traceback.format_exc(),
            )
            return None

    def run_forever(self) -> None:
        while not self._stop.is_set():
            self.tick()
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = Thread(target=self.run_forever, name="reservation-sweeper", daemon=True)
        self._thread.start()
        log_event("reservation.sweeper.started", log=logger, interval_seconds=self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        log_event("reservation.sweeper.stopped", log=logger)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Expire lapsed inventory reservations.")
    parser.add_argument("--once", action="store_true", help="Run a single sweep and exit.")
    parser.add_argument("--tenant-id", default=None, help="Restrict the sweep to one tenant.")
    parser.add_argument("--batch-size", type=int, default=None)
    args = parser.parse_args(argv)

    setup_observability()
    if args.once or args.tenant_id:
        run_sweep(tenant_id=args.tenant_id, batch_size=args.batch_size)
        return

    sweeper = ReservationSweeper()
    try:
        sweeper.run_forever()
    except KeyboardInterrupt:
        sweeper.stop()


if __name__ == "__main__":
    main()
