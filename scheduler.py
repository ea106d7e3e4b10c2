import logging
import threading

from compliance import check_driver_compliance
from maintenance_due import check_maintenance_due

logger = logging.getLogger(__name__)


def run_scheduled_checks(conn, now=None):
    return {
        "compliance": check_driver_compliance(conn, now=now),
        "maintenance_due": check_maintenance_due(conn, now=now),
    }


class ComplianceScheduler:
    """Runs the scans on a daemon thread, opening a fresh connection per cycle."""

    def __init__(self, connect, interval_seconds):
        self.connect = connect
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self.worker_thread = None

    @property
    def running(self):
        return self.worker_thread is not None and self.worker_thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self.worker_thread = threading.Thread(
            target=self._run, name="compliance-scheduler", daemon=True
        )
        self.worker_thread.start()
        logger.info("Compliance scheduler started (every %ss)", self.interval_seconds)

    def stop(self):
        self._stop_event.set()
        if self.worker_thread:
            self.worker_thread.join(timeout=5)
        self.worker_thread = None
        logger.info("Compliance scheduler stopped")

    def run_once(self):
        conn = self.connect()
        try:
            result = run_scheduled_checks(conn)
        finally:
            conn.close()
        logger.info(
            "Scheduled scan: %s compliance alert(s), %s maintenance due alert(s)",
            len(result["compliance"]),
            len(result["maintenance_due"]),
        )
        return result

    def _run(self):
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Scheduled scan failed")
            self._stop_event.wait(self.interval_seconds)
