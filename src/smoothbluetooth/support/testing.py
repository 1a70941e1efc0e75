"""
Helpers for testing code that runs on background threads, including an in-memory radio whose
channels block like real ones until they are resolved by the test or closed.
"""
import os
import sys
import threading
import time
from queue import Queue

from smoothbluetooth.channel import ClientChannel, ServerChannel, Channel, ChannelNotConnectedError, ChannelError
from smoothbluetooth.device import Device
from smoothbluetooth.events import Listener
from smoothbluetooth.radio.base import Radio, DeviceFoundEvent, DiscoveryFinishedEvent


def debug_timeout(value):
    """
    Replaces the timeout value with a very large one if the tests are running under a debugger.
    This prevents the main thread from throwing an exception and exiting when the test times out
    due to a breakpoint.
    """
    return value if sys.gettrace() is None else 100000


def wait_until(predicate, timeout=2.0, interval=0.005):
    """
    Polls the predicate until it returns a truthy value or the timeout elapses.
    :return: the last value returned by the predicate.
    """
    deadline = time.monotonic() + timeout
    result = predicate()
    while not result and time.monotonic() < deadline:
        time.sleep(interval)
        result = predicate()
    return result


class RecordingListener(Listener):
    """ records every event as a tuple of the event name and its arguments. """

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def __getattribute__(self, name):
        if name.startswith('on_'):
            def record(*args):
                with self._lock:
                    self.events.append((name,) + args)
            return record
        return super().__getattribute__(name)

    def names(self):
        with self._lock:
            return [e[0] for e in self.events]

    def count(self, name):
        return self.names().count(name)

    def received(self):
        """ all the data received, joined together. """
        with self._lock:
            return b''.join(e[1] for e in self.events if e[0] == 'on_data_received')


class _Stream:
    """ the input and output halves of a fake channel. """

    def __init__(self, channel):
        self._channel = channel
        self.incoming = Queue()
        self.written = []
        self._write_lock = threading.Lock()

    def read1(self, size=-1):
        if self._channel.closed:
            raise ChannelNotConnectedError("read on closed channel")
        data = self.incoming.get()
        if data is None or self._channel.closed:
            raise ChannelNotConnectedError("channel closed")
        if isinstance(data, Exception):
            raise data
        return data

    def write(self, data):
        if self._channel.closed:
            raise ChannelNotConnectedError("write on closed channel")
        with self._write_lock:
            self.written.append(bytes(data))
        return len(data)

    def flush(self):
        pass


class FakeChannel(ClientChannel):
    """
    A channel whose input is fed by the test with feed(), and whose output is recorded in `written`.
    connect() blocks until the test calls succeed() or fail(), or the channel is closed.
    """

    def __init__(self, device):
        self._device = device
        self.closed = False
        self.close_count = 0
        self._stream = _Stream(self)
        self._outcome = None
        self._resolved = threading.Event()
        self.connecting = threading.Event()

    @property
    def device(self):
        return self._device

    @property
    def input(self):
        return self._stream

    @property
    def output(self):
        return self._stream

    @property
    def open(self):
        return not self.closed

    @property
    def written(self):
        return b''.join(self._stream.written)

    @property
    def writes(self):
        return list(self._stream.written)

    def feed(self, data):
        """ makes data available to read, or raises the given exception from the pending read. """
        self._stream.incoming.put(data)

    def connect(self):
        self.connecting.set()
        self._resolved.wait()
        if self.closed:
            raise ChannelNotConnectedError("closed while connecting")
        if self._outcome is not None:
            raise self._outcome

    def succeed(self):
        self._resolved.set()

    def fail(self, error=None):
        self._outcome = error or ChannelError("connection refused")
        self._resolved.set()

    def close(self):
        self.close_count += 1
        if not self.closed:
            self.closed = True
            self._stream.incoming.put(None)
            self._resolved.set()


class FakeServerChannel(ServerChannel):
    """
    accept() blocks until the test calls deliver() with a channel or fail() with an error,
    or the server channel is closed.
    """

    def __init__(self):
        self.closed = False
        self._pending = Queue()
        self.accepting = threading.Event()

    def deliver(self, channel: Channel):
        self._pending.put(channel)

    def fail(self, error):
        """ raises the error from the pending accept. """
        self._pending.put(error)

    def accept(self):
        self.accepting.set()
        if self.closed:
            raise ChannelNotConnectedError("server channel closed")
        channel = self._pending.get()
        if channel is None:
            raise ChannelNotConnectedError("server channel closed")
        if isinstance(channel, Exception):
            raise channel
        return channel

    def close(self):
        if not self.closed:
            self.closed = True
            self._pending.put(None)


class FakeRadio(Radio):
    """
    An in-memory radio. Every listen() and client() call creates a fake channel, recorded in
    `servers` and `clients` so the test can drive them.
    """

    def __init__(self, paired=(), available=True, enabled=True, discovery_starts=True):
        super().__init__()
        self._available = available
        self._enabled = enabled
        self.paired = list(paired)
        self.discovery_starts = discovery_starts
        self._discovering = False
        self.servers = []
        self.clients = []
        self.calls = []
        self.listen_error = None
        self._lock = threading.Lock()

    @property
    def available(self):
        return self._available

    @property
    def enabled(self):
        return self._enabled

    def paired_devices(self):
        return list(self.paired)

    def start_discovery(self):
        self.calls.append('start_discovery')
        self._discovering = self.discovery_starts
        return self.discovery_starts

    def cancel_discovery(self):
        self.calls.append('cancel_discovery')
        self._discovering = False
        return True

    @property
    def discovering(self):
        return self._discovering

    def found(self, device: Device):
        """ simulates the scan finding a device. """
        self.discovery.fire(DeviceFoundEvent(device))

    def finished(self):
        """ simulates the scan completing. """
        self._discovering = False
        self.discovery.fire(DiscoveryFinishedEvent())

    def listen(self, profile, security):
        self.calls.append(('listen', profile, security))
        if self.listen_error is not None:
            raise self.listen_error
        server = FakeServerChannel()
        with self._lock:
            self.servers.append(server)
        return server

    def client(self, device, profile, security):
        self.calls.append(('client', device, profile, security))
        channel = FakeChannel(device)
        with self._lock:
            self.clients.append(channel)
        return channel

    def latest_server(self, timeout=2.0) -> FakeServerChannel:
        """ waits for a server channel to be created and accepting, and returns the latest. """
        wait_until(lambda: self.servers and self.servers[-1].accepting.is_set(), timeout)
        return self.servers[-1] if self.servers else None

    def latest_client(self, timeout=2.0) -> FakeChannel:
        """ waits for a client channel to be connecting, and returns the latest. """
        wait_until(lambda: self.clients and self.clients[-1].connecting.is_set(), timeout)
        return self.clients[-1] if self.clients else None


class FakeScanProcess:
    """
    Stands in for a running `bluetoothctl scan`. stdout is a pipe carrying the given lines,
    which reports end of output once finish() or terminate() is called.
    """

    def __init__(self, *lines):
        read_fd, self._write_fd = os.pipe()
        self.stdout = os.fdopen(read_fd, 'r')
        self.returncode = None
        self._lock = threading.Lock()
        for line in lines:
            os.write(self._write_fd, line.encode('utf-8'))

    def poll(self):
        return self.returncode

    def finish(self, returncode=0):
        with self._lock:
            if self.returncode is None:
                self.returncode = returncode
                os.close(self._write_fd)

    def terminate(self):
        self.finish(-15)

    def wait(self, timeout=None):
        return self.returncode
