"""
Tests for the background channel renewer.
"""

import threading

from drivewatch.server.renewal import ChannelRenewer


class StubReconciler:
    def __init__(self, renewed=(), fail=False):
        self.renewed = list(renewed)
        self.fail = fail
        self.margins = []
        self.called = threading.Event()

    def renew_expiring(self, within_seconds):
        self.margins.append(within_seconds)
        self.called.set()
        if self.fail:
            raise RuntimeError("boom")
        return self.renewed


class TestChannelRenewer:
    """Tests for ChannelRenewer."""

    def test_run_once_passes_margin(self):
        """run_once() renews with the configured margin."""
        reconciler = StubReconciler(renewed=["h1", "h2"])
        renewer = ChannelRenewer(reconciler, margin_seconds=600, interval_seconds=60)
        assert renewer.run_once() == 2
        assert reconciler.margins == [600]

    def test_loop_survives_failures(self):
        """A failing pass does not kill the thread."""
        reconciler = StubReconciler(fail=True)
        renewer = ChannelRenewer(reconciler, margin_seconds=600, interval_seconds=0.01)

        renewer.start()
        try:
            assert reconciler.called.wait(timeout=5)
        finally:
            renewer.stop()

        assert not renewer._thread.is_alive()

    def test_stop_before_first_pass(self):
        """Stopping before the first interval renews nothing."""
        reconciler = StubReconciler()
        renewer = ChannelRenewer(reconciler, margin_seconds=600, interval_seconds=3600)
        renewer.start()
        renewer.stop()
        assert reconciler.margins == []
