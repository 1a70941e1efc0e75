"""
The workers that do the blocking I/O for a connection, each on its own daemon thread:

- ListenWorker accepts one inbound channel
- ConnectWorker opens one outbound channel
- SessionWorker reads from an established channel until it fails or is cancelled, and serializes writes

Workers report outcomes to their owner (the state machine) through on_worker_connected(),
on_listen_failed(), on_worker_failed() and on_session_lost(). They never raise across that boundary.
A worker that has been cancelled reports nothing: its I/O error is the expected result of closing its channel.
"""
import logging
import threading

from smoothbluetooth.channel import Channel, ChannelNotConnectedError, close_quietly
from smoothbluetooth.support.threads import BackgroundThread

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 1024


class Worker(BackgroundThread):
    """
    Base for workers that block on a channel. cancel() closes the channel, which is the only
    way to unblock the pending accept, connect or read, and then join() waits for the thread.
    """

    def __init__(self, owner, name):
        super().__init__(name=name, log=logger)
        self.owner = owner
        self.channel = None
        self._cancelled = threading.Event()
        self._channel_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self):
        """
        Closes the worker's channel so that any blocking call returns. Safe to call more than once,
        and on a worker that has already finished. Does not wait for the thread; use join().
        """
        with self._channel_lock:
            self._cancelled.set()
            self.signal_stop()
            channel = self.channel
            self.channel = None
        close_quietly(channel)

    def _attach(self, channel) -> bool:
        """
        Records the channel the worker is about to block on, so that cancel() can close it.
        If the worker was cancelled before the channel was created, the channel is closed here.
        :return: True if the worker should go on to use the channel.
        """
        with self._channel_lock:
            if not self.cancelled:
                self.channel = channel
                return True
        close_quietly(channel)
        return False

    def _detach(self):
        """ forgets the channel, once ownership has passed elsewhere. """
        with self._channel_lock:
            self.channel = None

    def __repr__(self):
        return self.name


class ListenWorker(Worker):
    """
    Opens a listening channel for the service and blocks until one peer connects.
    The accepted channel is handed to the owner with on_worker_connected(). Failing to open the listening
    channel, or to accept, is reported with on_listen_failed(). Runs once; the owner decides whether to
    listen again.
    """

    def __init__(self, owner, radio, profile, security):
        super().__init__(owner, name="listen-%s" % profile.name.lower())
        self.radio = radio
        self.profile = profile
        self.security = security

    def loop(self):
        self.signal_stop()
        try:
            server = self.radio.listen(self.profile, self.security)
        except (IOError, OSError) as e:
            logger.error("unable to listen for %s (%s): %s" % (self.profile.service_id, self.security.value, e))
            self._failed()
            return
        if not self._attach(server):
            return
        try:
            channel = server.accept()
        except (IOError, OSError) as e:
            channel = None
            if not self.cancelled:
                logger.warning("accept failed: %s" % e)
        finally:
            self._detach()
            close_quietly(server)
        if channel is None:
            self._failed()
            return
        logger.info("accepted connection from %s" % channel.device)
        self.owner.on_worker_connected(self, channel, channel.device)

    def _failed(self):
        if self.cancelled:
            logger.debug("%s cancelled" % self)
            return
        self.owner.on_listen_failed(self)


class ConnectWorker(Worker):
    """
    Opens a channel to a device. Discovery is cancelled first since scanning slows down the connection.
    Runs once: success is reported with on_worker_connected(), failure with on_worker_failed().
    """

    def __init__(self, owner, radio, device, profile, security):
        super().__init__(owner, name="connect-%s" % device.address)
        self.radio = radio
        self.device = device
        self.profile = profile
        self.security = security

    def loop(self):
        self.signal_stop()
        self.radio.cancel_discovery()
        try:
            channel = self.radio.client(self.device, self.profile, self.security)
        except (IOError, OSError) as e:
            self._failed(e)
            return
        if not self._attach(channel):
            return
        try:
            channel.connect()
        except (IOError, OSError) as e:
            self._detach()
            close_quietly(channel)
            self._failed(e)
            return
        self._detach()
        self.owner.on_worker_connected(self, channel, self.device)

    def _failed(self, e):
        if self.cancelled:
            logger.debug("%s cancelled" % self)
            return
        logger.warning("unable to connect to %s: %s" % (self.device, e))
        self.owner.on_worker_failed(self, self.device)


class SessionWorker(Worker):
    """
    Owns an established channel. The background thread reads whatever data is available and posts it as
    on_data_received events. write() may be called from any thread.

    :param owner the state machine, notified with on_session_lost() when the channel fails
    :param channel the connected channel. It is closed when the worker exits.
    :param device the peer
    :param events the dispatcher that receives on_data_received and on_data_sent events
    :param read_size the most bytes to read at a time
    """

    def __init__(self, owner, channel: Channel, device, events, read_size=DEFAULT_READ_SIZE):
        super().__init__(owner, name="session-%s" % device.address)
        self.channel = channel
        self.device = device
        self.events = events
        self.read_size = read_size
        self._write_lock = threading.Lock()

    def loop(self):
        channel = self.channel
        try:
            if channel is None:
                raise ChannelNotConnectedError("no channel")
            data = channel.input.read1(self.read_size)
        except (IOError, OSError, ValueError) as e:    # ValueError: read on a stream already closed
            self._lost(e)
            return
        if not data:
            self._lost(EOFError("end of stream"))
            return
        self._post('on_data_received', data)

    def exception_handler(self, e):
        super().exception_handler(e)
        self._lost(e)

    def _lost(self, e):
        self.signal_stop()
        if self.cancelled:
            logger.debug("%s cancelled" % self)
            return
        logger.info("connection to %s lost: %s" % (self.device, e))
        self.owner.on_session_lost(self)

    def shutdown(self):
        with self._channel_lock:
            channel = self.channel
            self.channel = None
        close_quietly(channel)

    def write(self, data) -> bool:
        """
        Writes all of data to the peer. Concurrent calls are serialized.
        :return: True when the data was written. False if the write failed, in which case the read loop
            will discover the broken channel.
        :raises ChannelNotConnectedError: when the session has ended or been cancelled.
        """
        with self._write_lock:
            channel = self.channel
            if channel is None or not self.running():
                raise ChannelNotConnectedError("not connected to %s" % self.device)
            try:
                output = channel.output
                output.write(data)
                output.flush()
            except (IOError, OSError, ValueError) as e:
                logger.warning("write to %s failed: %s" % (self.device, e))
                return False
            self._post('on_data_sent', bytes(data))
        return True

    def _post(self, event, data):
        """ posts a data event unless the session was cancelled, so none follows the disconnect event. """
        with self._channel_lock:
            if not self.cancelled:
                self.events.post(event, data)
