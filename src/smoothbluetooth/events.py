"""
The events delivered to the consumer, and the dispatcher that delivers them in order.
"""
import logging
import threading
from queue import Queue

from smoothbluetooth.support.threads import BackgroundThread

logger = logging.getLogger(__name__)


class Listener:
    """
    Receives notifications about the radio, discovery, the connection lifecycle and data.
    All methods are called on the dispatcher's thread, one at a time, in the order the events occurred.
    The methods here do nothing; subclasses override the ones they are interested in.
    """

    def on_radio_unavailable(self):
        """ the platform has no bluetooth adapter. """

    def on_radio_disabled(self):
        """ the adapter is switched off. """

    def on_listening(self):
        """ now waiting for an inbound connection. """

    def on_listen_failed(self):
        """ the listening endpoint could not be opened, or stopped accepting. The connection is idle. """

    def on_connecting(self, device):
        pass

    def on_connected(self, device):
        pass

    def on_disconnected(self):
        pass

    def on_connection_failed(self, device):
        pass

    def on_discovery_started(self):
        pass

    def on_discovery_finished(self):
        pass

    def on_no_devices_found(self):
        pass

    def on_devices_found(self, devices, callback):
        """
        :param devices: the list of candidate devices, paired devices first.
        :param callback: a ConnectionCallback. Call callback.connect_to(device) with the chosen device.
        """

    def on_data_received(self, data):
        """
        :param data: the bytes read from the peer, in the order they were received.
        """

    def on_data_sent(self, data):
        """
        :param data: the bytes written to the peer.
        """


# the events a listener can receive, used to reject misspelled event names early
EVENTS = frozenset(name for name in vars(Listener) if name.startswith('on_'))

_STOP = object()


class _Flush:
    def __init__(self):
        self.done = threading.Event()


class EventDispatcher(BackgroundThread):
    """
    Queues events from any thread and delivers them to the listener on a single background thread.

    Events posted from one thread are delivered in the order they were posted. Events posted while
    holding a lock are delivered in the order the lock was acquired, so lifecycle events from the
    state machine keep the order of the transitions that caused them.

    An exception raised by the listener is logged; delivery continues with the next event.
    After close(), events are discarded.

    :param listener the Listener to deliver to. A no-op Listener is used when None.
    """

    def __init__(self, listener: Listener = None):
        super().__init__(name="smoothbluetooth-events", log=logger)
        self._listener = listener if listener is not None else Listener()
        self.event_queue = Queue()
        self._closed = False
        self._muted = False

    @property
    def listener(self) -> Listener:
        return self._listener

    @listener.setter
    def listener(self, listener: Listener):
        self._listener = listener if listener is not None else Listener()

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, event, *args) -> bool:
        """
        Queues an event for delivery.
        :param event: the name of the Listener method to call
        :param args: the arguments for the method
        :return: True if the event was queued, False if the dispatcher is closed.
        """
        if event not in EVENTS:
            raise ValueError("unknown event %s" % event)
        if self._closed:
            logger.debug("dispatcher closed, discarding %s" % event)
            return False
        self.event_queue.put((event, args))
        return True

    def loop(self):
        item = self.event_queue.get()
        if item is _STOP:
            self.signal_stop()
        elif isinstance(item, _Flush):
            item.done.set()
        elif not self._muted:
            self._deliver(*item)

    def _deliver(self, event, args):
        handler = getattr(self._listener, event, None)
        if handler is None:
            return
        try:
            handler(*args)
        except Exception as e:
            logger.exception("listener failed handling %s: %s" % (event, e))

    def flush(self, timeout=None) -> bool:
        """
        Waits until all events posted so far have been delivered.
        Called from the dispatcher thread (i.e. from a listener method) it returns False at once.
        :return: True if the events were delivered within the timeout.
        """
        if self.background_thread is threading.current_thread() or not self.alive:
            return False
        marker = _Flush()
        self.event_queue.put(marker)
        return marker.done.wait(timeout)

    def close(self, timeout=None) -> bool:
        """
        Delivers the events already queued, then stops the dispatcher thread.
        When called from a listener method, the remaining queued events are dropped instead,
        since the calling thread cannot wait for itself.
        No event is delivered once close() returns.
        """
        if self._closed:
            return True
        self._closed = True
        if self.background_thread is threading.current_thread():
            self._muted = True
        self.event_queue.put(_STOP)
        if self.background_thread is None:
            self.signal_stop()
            return True
        exited = self.join(timeout)
        if not exited:
            logger.warning("listener still busy after %ss, dropping queued events" % timeout)
            self._muted = True
        return exited
