import logging
import threading
from enum import Enum

from smoothbluetooth.channel import ChannelNotConnectedError, close_quietly
from smoothbluetooth.events import EventDispatcher
from smoothbluetooth.radio.base import ServiceProfile, Security
from smoothbluetooth.workers import ListenWorker, ConnectWorker, SessionWorker, DEFAULT_READ_SIZE

logger = logging.getLogger(__name__)

# how long to wait for a cancelled worker's thread to exit. A connect blocked in the platform
# cannot always be interrupted, so the wait is bounded and the daemon thread left to finish.
DEFAULT_JOIN_TIMEOUT = 5.0


class ConnectionState(Enum):
    IDLE = 0
    LISTENING = 1
    CONNECTING = 2
    CONNECTED = 3


class ConnectionStateMachine:
    """
    Maintains a single connection to a peer, either accepted (listening) or initiated (connecting).

    The state and the worker handles are only changed while holding the transition lock. At any time:
    - IDLE: no worker
    - LISTENING: a listen worker
    - CONNECTING: a connect worker
    - CONNECTED: a session worker

    Each transition queues one lifecycle event on the dispatcher while holding the lock, so the listener
    sees the events in transition order. When a connect attempt fails or a session is lost, the machine
    goes back to listening, immediately and without limit. A failure to listen leaves it idle.

    Workers report back from their own threads. A report from a worker that is no longer current
    (it was cancelled, or another worker won the race to connect) is discarded, and any channel it
    brought is closed.

    :param radio the Radio used to open channels
    :param profile the service to listen for and to connect to by default
    :param security whether channels are secure by default
    :param events the EventDispatcher receiving lifecycle events. One is created (and started) when None.
    :param read_size the most bytes delivered in one on_data_received event
    """

    def __init__(self, radio, profile=ServiceProfile.OTHER_DEVICE, security=Security.SECURE,
                 events: EventDispatcher = None, read_size=DEFAULT_READ_SIZE, join_timeout=DEFAULT_JOIN_TIMEOUT):
        self.radio = radio
        self.profile = profile
        self.security = security
        self.events = events if events is not None else EventDispatcher()
        self.events.start()
        self.read_size = read_size
        self.join_timeout = join_timeout
        self._lock = threading.Lock()
        self._state = ConnectionState.IDLE
        self._device = None
        self._stopped = False
        self.listen_worker = None
        self.connect_worker = None
        self.session_worker = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def device(self):
        """ the peer being connected to, or connected. None otherwise. """
        return self._device

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start_listening(self):
        """
        Waits for a peer to connect. Any connect attempt or session is abandoned first.
        Does nothing when already listening.
        """
        with self._lock:
            if self._refuse("start_listening") or self._state is ConnectionState.LISTENING:
                return
            was_connected = self.connected
            stale = self._cancel_all()
            self._device = None
            self._spawn_listener()
            self._transition(ConnectionState.LISTENING, 'on_disconnected' if was_connected else 'on_listening')
        self._reap(stale)

    def connect_to(self, device, profile: ServiceProfile = None, security: Security = None):
        """
        Starts connecting to the device. A current session is disconnected, and listening stops.
        :param profile: the service to connect to. Defaults to the profile given at construction.
        :param security: defaults to the security given at construction.
        """
        with self._lock:
            if self._refuse("connect_to"):
                return
            was_connected = self.connected
            stale = self._cancel_all()
            if was_connected:
                self.events.post('on_disconnected')
            self._device = device
            self.connect_worker = self._new_connect_worker(device, profile or self.profile,
                                                           security or self.security)
            self.connect_worker.start()
            self._transition(ConnectionState.CONNECTING, 'on_connecting', device)
        self._reap(stale)

    def on_worker_connected(self, worker, channel, device) -> bool:
        """
        Called by a listen or connect worker with the channel it established.
        :return: True if the channel was installed as the session, False if it was discarded.
        """
        stale = []
        with self._lock:
            current = worker is not None and worker in (self.listen_worker, self.connect_worker)
            installed = current and self._state in (ConnectionState.LISTENING, ConnectionState.CONNECTING)
            if installed:
                if worker is self.listen_worker:
                    self.listen_worker = None
                    stale = self._cancel('connect_worker')
                else:
                    self.connect_worker = None
                    stale = self._cancel('listen_worker')
                self._device = device
                self.session_worker = self._new_session_worker(channel, device)
                self.session_worker.start()
                self._transition(ConnectionState.CONNECTED, 'on_connected', device)
        if not installed:
            logger.debug("discarding channel to %s from superseded %s" % (device, worker))
            close_quietly(channel)
        self._reap(stale)
        return installed

    def on_worker_failed(self, worker, device) -> bool:
        """
        Called by a connect worker that could not connect. Goes back to listening.
        :return: True if the failure was acted upon, False if the worker was no longer current.
        """
        with self._lock:
            if worker is None or worker is not self.connect_worker:
                logger.debug("ignoring failure from superseded %s" % worker)
                return False
            self.connect_worker = None
            self._device = None
            self._spawn_listener()
            self._transition(ConnectionState.LISTENING, 'on_connection_failed', device)
        return True

    def on_listen_failed(self, worker) -> bool:
        """
        Called by a listen worker that could not open its listening channel, or whose accept failed.
        Goes idle; start_listening() tries again.
        :return: True if the failure was acted upon, False if the worker was no longer current.
        """
        with self._lock:
            if worker is None or worker is not self.listen_worker:
                logger.debug("ignoring listen failure from superseded %s" % worker)
                return False
            self.listen_worker = None
            self._device = None
            self._transition(ConnectionState.IDLE, 'on_listen_failed')
        return True

    def on_session_lost(self, worker) -> bool:
        """
        Called by the session worker when reading from the channel fails. Goes back to listening.
        :return: True if the loss was acted upon, False if the worker was no longer current.
        """
        with self._lock:
            if worker is None or worker is not self.session_worker:
                logger.debug("ignoring loss from superseded %s" % worker)
                return False
            self.session_worker = None
            self._device = None
            self._transition(ConnectionState.LISTENING, 'on_disconnected')
            self._spawn_listener()
        return True

    def disconnect(self):
        """
        Stops whatever is running and goes idle. on_disconnected is only posted if a session was connected.
        """
        with self._lock:
            if self._stopped:
                return
            stale = self._go_idle()
        self._reap(stale)

    def stop(self) -> bool:
        """
        Shuts down for good: all workers are stopped and the dispatcher is closed once the events
        already queued have been delivered. No event is delivered after stop() returns.
        :return: False if already stopped.
        """
        with self._lock:
            if self._stopped:
                return False
            self._stopped = True
            stale = self._go_idle()
        self._reap(stale)
        self.events.close(self.join_timeout)
        logger.debug("stopped")
        return True

    def write(self, data) -> bool:
        """
        Sends data over the current session.
        :return: False when not connected or the write failed.
        """
        with self._lock:
            worker = self.session_worker
        if worker is None:
            logger.debug("not connected, %d bytes not sent" % len(data))
            return False
        try:
            return worker.write(data)
        except ChannelNotConnectedError as e:
            logger.debug("%s, %d bytes not sent" % (e, len(data)))
            return False

    def workers(self) -> tuple:
        """ the workers currently installed, for diagnostics. """
        with self._lock:
            return tuple(w for w in (self.listen_worker, self.connect_worker, self.session_worker)
                         if w is not None)

    def _refuse(self, operation):
        if self._stopped:
            logger.warning("%s ignored, connection has been stopped" % operation)
        return self._stopped

    def _go_idle(self):
        was_connected = self.connected
        stale = self._cancel_all()
        self._device = None
        if self._state is not ConnectionState.IDLE:
            self._transition(ConnectionState.IDLE, 'on_disconnected' if was_connected else None)
        return stale

    def _transition(self, state, event, *args):
        logger.debug("state %s -> %s" % (self._state.name, state.name))
        self._state = state
        if event is not None:
            self.events.post(event, *args)

    def _spawn_listener(self):
        self.listen_worker = self._new_listen_worker()
        self.listen_worker.start()

    def _cancel(self, *names):
        """ cancels the named workers and removes them. Returns the workers so they can be joined. """
        stale = []
        for name in names:
            worker = getattr(self, name)
            if worker is not None:
                setattr(self, name, None)
                worker.cancel()
                stale.append(worker)
        return stale

    def _cancel_all(self):
        return self._cancel('session_worker', 'connect_worker', 'listen_worker')

    def _reap(self, workers):
        """ waits for cancelled workers to exit. Must not be called while holding the lock. """
        for worker in workers:
            if not worker.join(self.join_timeout):
                logger.warning("%s still running %ss after being cancelled" % (worker, self.join_timeout))

    def _new_listen_worker(self):
        return ListenWorker(self, self.radio, self.profile, self.security)

    def _new_connect_worker(self, device, profile, security):
        return ConnectWorker(self, self.radio, device, profile, security)

    def _new_session_worker(self, channel, device):
        return SessionWorker(self, channel, device, self.events, self.read_size)
