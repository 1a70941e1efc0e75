import logging
import socket
from abc import abstractmethod
from io import IOBase

logger = logging.getLogger(__name__)


class ChannelError(IOError):
    """ Indicates an error condition with a channel. """


class ChannelNotConnectedError(ChannelError):
    """ Indicates the channel is closed, or not yet connected, when a connection is required. """


class Channel:
    """
    A channel allows two-way communication with a peer device.
    It provides a file-like input endpoint and a file-like output endpoint.
    Closing the channel, from any thread, unblocks any read in progress with an error.
    """

    @property
    @abstractmethod
    def device(self):
        """ the peer Device at the other end of this channel. """
        raise NotImplementedError

    @property
    @abstractmethod
    def input(self) -> IOBase:
        """ fetches the I/O stream that provides input.
            Callers use read1() to fetch whatever data is available, blocking until some arrives. """
        raise NotImplementedError

    @property
    @abstractmethod
    def output(self) -> IOBase:
        """ fetches the I/O stream that provides output.
            Callers use write() and flush(). """
        raise NotImplementedError

    @property
    @abstractmethod
    def open(self) -> bool:
        """ determines if this channel is open. When open, the streams provided by
            input and output can be read from/written to."""
        raise NotImplementedError

    @abstractmethod
    def close(self):
        """
        Closes both the input and output streams. Closing a closed channel does nothing.
        """
        raise NotImplementedError


class ClientChannel(Channel):
    """
    An outbound channel that is created unconnected, so that it can be closed while connect() blocks.
    """

    @abstractmethod
    def connect(self):
        """
        Blocks until the channel is connected to the peer.
        Raises IOError if the connection cannot be made, or the channel is closed while connecting.
        """
        raise NotImplementedError


class ServerChannel:
    """
    A listening endpoint that accepts inbound channels.
    """

    @abstractmethod
    def accept(self) -> Channel:
        """
        Blocks until a peer connects, and returns the channel to that peer.
        Raises IOError when the server channel is closed while waiting.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self):
        raise NotImplementedError


def close_quietly(closeable):
    """
    Closes a channel or server channel, logging rather than raising any error.
    The peer may already have gone away, so failing to close is not interesting to the caller.
    """
    if closeable is None:
        return
    try:
        closeable.close()
    except (IOError, OSError) as e:
        logger.debug("error closing %s: %s" % (closeable, e))


class SocketChannel(Channel):
    """
    A channel that provides communication via a connected stream socket.
    :param sock The open, connected socket
    :param device The peer device
    """

    def __init__(self, sock: socket.socket, device):
        """
        :param sock: the socket that represents the connection
        :type sock: socket
        """
        self.sock = sock
        self._device = device
        self._closed = False
        self.read = sock.makefile('rb')
        self.write = sock.makefile('wb')

    @property
    def device(self):
        return self._device

    @property
    def open(self) -> bool:
        return not self._closed and self.sock.fileno() >= 0

    @property
    def input(self):
        return self.read

    @property
    def output(self):
        return self.write

    def close(self):
        if self._closed:
            return
        self._closed = True
        # shutdown first: a reader blocked in read1() holds the reader's lock until the socket wakes it
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass    # the peer may have closed the socket
        finally:
            self.sock.close()
            close_quietly(self.write)
            close_quietly(self.read)

    def __repr__(self):
        return "SocketChannel(%s)" % self._device


class SocketServerChannel(ServerChannel):
    """
    A server channel listening on a bound stream socket.
    :param sock the bound, listening socket
    :param device_factory a callable that builds the peer Device from the address returned by accept()
    """

    def __init__(self, sock: socket.socket, device_factory):
        self.sock = sock
        self._device_factory = device_factory
        self._closed = False

    def accept(self) -> Channel:
        if self._closed:
            raise ChannelNotConnectedError("server channel is closed")
        client, address = self.sock.accept()
        return SocketChannel(client, self._device_factory(address))

    def close(self):
        if self._closed:
            return
        self._closed = True
        # shutdown wakes a thread blocked in accept(), close() alone does not
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        finally:
            self.sock.close()


class SocketClientChannel(SocketChannel, ClientChannel):
    """
    A socket channel that is connected on demand to the given socket address.
    """

    def __init__(self, sock: socket.socket, device, address):
        super().__init__(sock, device)
        self.address = address

    def connect(self):
        if self._closed:
            raise ChannelNotConnectedError("channel to %s is closed" % self.device)
        self.sock.connect(self.address)
        logger.info("opened socket to %s" % str(self.address))
