import threading
from unittest import TestCase
from unittest.mock import Mock

import timeout_decorator
from hamcrest import assert_that, is_

from smoothbluetooth.support.testing import debug_timeout
from smoothbluetooth.support.threads import BackgroundThread


class CountingThread(BackgroundThread):
    def __init__(self, stop_after):
        super().__init__(name="counting")
        self.count = 0
        self.stop_after = stop_after
        self.started = False
        self.finished = False

    def startup(self):
        self.started = True

    def loop(self):
        self.count += 1
        if self.count >= self.stop_after:
            self.signal_stop()

    def shutdown(self):
        self.finished = True


class BackgroundThreadTest(TestCase):

    @timeout_decorator.timeout(debug_timeout(5))
    def test_runs_loop_until_stopped(self):
        sut = CountingThread(3)
        sut.start()
        assert_that(sut.join(2), is_(True))
        assert_that(sut.count, is_(3))
        assert_that(sut.started, is_(True))
        assert_that(sut.finished, is_(True))
        assert_that(sut.alive, is_(False))

    def test_join_before_start(self):
        sut = CountingThread(1)
        assert_that(sut.join(), is_(True))
        assert_that(sut.alive, is_(False))

    def test_not_started_after_stop(self):
        sut = CountingThread(1)
        sut.stop()
        sut.start()
        assert_that(sut.background_thread, is_(None))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_start_twice_uses_one_thread(self):
        sut = CountingThread(1)
        sut.start()
        thread = sut.background_thread
        sut.start()
        assert_that(sut.background_thread, is_(thread))
        sut.join(2)

    @timeout_decorator.timeout(debug_timeout(5))
    def test_exceptions_are_handled_and_loop_continues(self):
        sut = CountingThread(2)
        sut.exception_handler = Mock()
        error = ValueError("boom")
        loop = sut.loop

        def fail_first():
            if not sut.exception_handler.called:
                raise error
            loop()
        sut.loop = fail_first
        sut.start()
        sut.join(2)
        sut.exception_handler.assert_called_once_with(error)
        assert_that(sut.count, is_(2))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_join_from_own_thread_returns(self):
        results = []

        class SelfJoining(BackgroundThread):
            def loop(self):
                results.append(self.stop())

        sut = SelfJoining()
        sut.start()
        sut.join(2)
        assert_that(results, is_([True]))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_stop_waits_for_blocked_loop(self):
        release = threading.Event()

        class Blocking(BackgroundThread):
            def loop(self):
                release.wait()

        sut = Blocking()
        sut.start()
        assert_that(sut.stop(0.05), is_(False))
        release.set()
        assert_that(sut.join(2), is_(True))
