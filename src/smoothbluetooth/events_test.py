import threading
from unittest import TestCase

import timeout_decorator
from hamcrest import assert_that, is_, calling, raises, contains_exactly, empty

from smoothbluetooth.device import Device
from smoothbluetooth.events import EventDispatcher, Listener, EVENTS
from smoothbluetooth.support.testing import RecordingListener, debug_timeout, wait_until

phone = Device("phone", "00:11:22:33:44:55")


class ListenerTest(TestCase):

    def test_events(self):
        assert_that('on_connected' in EVENTS, is_(True))
        assert_that('on_data_received' in EVENTS, is_(True))
        assert_that('connected' in EVENTS, is_(False))

    def test_methods_do_nothing(self):
        listener = Listener()
        for name in EVENTS:
            method = getattr(listener, name)
            argcount = method.__func__.__code__.co_argcount - 1
            assert_that(method(*([None] * argcount)), is_(None))


class EventDispatcherTest(TestCase):

    def setUp(self):
        self.listener = RecordingListener()
        self.sut = EventDispatcher(self.listener)

    def tearDown(self):
        self.sut.close(1)

    @timeout_decorator.timeout(debug_timeout(5))
    def test_delivers_in_order(self):
        self.sut.start()
        self.sut.post('on_connecting', phone)
        self.sut.post('on_connected', phone)
        self.sut.post('on_data_received', b'abc')
        self.sut.post('on_disconnected')
        assert_that(self.sut.flush(2), is_(True))
        assert_that(self.listener.events, contains_exactly(
            ('on_connecting', phone), ('on_connected', phone), ('on_data_received', b'abc'), ('on_disconnected',)))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_delivers_on_one_thread(self):
        threads = []

        class ThreadListener(Listener):
            def on_listening(self):
                threads.append(threading.current_thread())

        self.sut.listener = ThreadListener()
        self.sut.start()
        for _ in range(3):
            self.sut.post('on_listening')
        self.sut.flush(2)
        assert_that(len(set(threads)), is_(1))
        assert_that(threads[0] is threading.current_thread(), is_(False))

    def test_unknown_event(self):
        assert_that(calling(self.sut.post).with_args('on_conected'), raises(ValueError, "unknown event"))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_listener_exception_does_not_stop_delivery(self):
        listener = self.listener

        class FailingListener(Listener):
            def on_connecting(self, device):
                raise ValueError("listener bug")

            def on_connected(self, device):
                listener.on_connected(device)

        self.sut.listener = FailingListener()
        self.sut.start()
        self.sut.post('on_connecting', phone)
        self.sut.post('on_connected', phone)
        self.sut.flush(2)
        assert_that(listener.names(), contains_exactly('on_connected'))

    def test_none_listener_is_no_op(self):
        sut = EventDispatcher(None)
        assert_that(sut.listener, is_(Listener))
        sut.listener = None
        assert_that(type(sut.listener), is_(Listener))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_delivers_queued_events(self):
        self.sut.start()
        for i in range(10):
            self.sut.post('on_data_received', bytes([i]))
        assert_that(self.sut.close(2), is_(True))
        assert_that(self.listener.received(), is_(bytes(range(10))))
        assert_that(self.sut.alive, is_(False))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_no_events_after_close(self):
        self.sut.start()
        self.sut.close(2)
        assert_that(self.sut.closed, is_(True))
        assert_that(self.sut.post('on_disconnected'), is_(False))
        assert_that(self.listener.events, is_(empty()))

    def test_close_when_not_started(self):
        assert_that(self.sut.close(), is_(True))
        assert_that(self.sut.close(), is_(True))
        assert_that(self.sut.post('on_listening'), is_(False))

    def test_flush_when_not_started(self):
        assert_that(self.sut.flush(0.1), is_(False))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_from_listener_drops_remaining_events(self):
        dispatcher = self.sut
        recorder = self.listener

        class ClosingListener(Listener):
            def on_disconnected(self):
                recorder.on_disconnected()
                assert_that(dispatcher.flush(1), is_(False))
                dispatcher.close(1)

            def on_listening(self):
                recorder.on_listening()

        self.sut.listener = ClosingListener()
        self.sut.post('on_disconnected')
        self.sut.post('on_listening')
        self.sut.start()
        assert_that(wait_until(lambda: not self.sut.alive), is_(True))
        assert_that(recorder.names(), contains_exactly('on_disconnected'))

    @timeout_decorator.timeout(debug_timeout(5))
    def test_close_times_out_on_busy_listener(self):
        release = threading.Event()
        entered = threading.Event()
        recorder = self.listener

        class BusyListener(Listener):
            def on_listening(self):
                entered.set()
                release.wait(2)

            def on_disconnected(self):
                recorder.on_disconnected()

        self.sut.listener = BusyListener()
        self.sut.start()
        self.sut.post('on_listening')
        self.sut.post('on_disconnected')
        entered.wait(2)
        assert_that(self.sut.close(0.05), is_(False))
        release.set()
        assert_that(self.sut.join(2), is_(True))
        assert_that(recorder.events, is_(empty()))
