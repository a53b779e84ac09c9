"""
Background channel renewal.

Drive channels expire; this thread renews the ones close to expiry so
monitoring keeps running without anyone calling the renew endpoint.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class ChannelRenewer:
    """Background thread that renews channels expiring within margin_seconds."""

    def __init__(self, reconciler, margin_seconds: int, interval_seconds: int):
        self.reconciler = reconciler
        self.margin_seconds = margin_seconds
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        """Start the renewal loop."""
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="channel-renewer", daemon=True)
        self._thread.start()

    def stop(self):
        """Stop the renewal loop."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5)

    def run_once(self) -> int:
        renewed = self.reconciler.renew_expiring(self.margin_seconds)
        if renewed:
            logger.info("Renewed %d expiring channel(s)", len(renewed))
        return len(renewed)

    def _run(self):
        while not self._stop.wait(self.interval_seconds):
            try:
                self.run_once()
            except Exception as e:
                logger.error("Channel renewal pass failed: %s", e, exc_info=True)
