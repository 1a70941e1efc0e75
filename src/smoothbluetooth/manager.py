import logging
import threading

from smoothbluetooth.config.config import connection_settings, load_default_config
from smoothbluetooth.connection import ConnectionStateMachine
from smoothbluetooth.device import DeviceRegistry
from smoothbluetooth.events import EventDispatcher, Listener
from smoothbluetooth.radio.base import ServiceProfile, Security, DeviceFoundEvent, DiscoveryFinishedEvent, \
    RadioUnavailableError, RadioDisabledError
from smoothbluetooth.workers import DEFAULT_READ_SIZE

logger = logging.getLogger(__name__)

CRLF = b"\r\n"


class ConnectionCallback:
    """ Passed to Listener.on_devices_found(), so the consumer can pick the device to connect to. """

    def __init__(self, manager):
        self._manager = manager

    def connect_to(self, device):
        if device is not None:
            self._manager.connect_to(device)

    __call__ = connect_to


class SmoothBluetooth:
    """
    Finds a device and maintains a connection to it.

    try_connection() offers the paired devices to the listener, or when there are none, scans for nearby devices.
    The listener chooses a device through the callback it is given with on_devices_found(), which starts
    connecting. Connection failures and lost sessions are reported and then the connection goes back to
    listening for the peer to connect.

    The service profile and security are fixed for the lifetime of the instance, and used for both
    listening and connecting.

    :param radio: the platform Radio
    :param listener: the Listener receiving events. May be set later.
    """

    def __init__(self, radio, listener: Listener = None, profile=ServiceProfile.OTHER_DEVICE,
                 security=Security.SECURE, read_size=DEFAULT_READ_SIZE):
        self.radio = radio
        self.profile = profile
        self.security = security
        self.registry = DeviceRegistry()
        self.events = EventDispatcher(listener)
        self.connection = ConnectionStateMachine(radio, profile, security, self.events, read_size)
        self._discovery_lock = threading.Lock()
        self._subscribed = False

    @classmethod
    def from_config(cls, radio, listener: Listener = None, config=None):
        """
        Creates an instance with the profile, security and read size from the configuration.
        :param config: a validated configuration. The package configuration is loaded when None.
        """
        config = config if config is not None else load_default_config()
        profile, security, read_size = connection_settings(config)
        return cls(radio, listener, profile, security, read_size)

    @property
    def listener(self) -> Listener:
        return self.events.listener

    @listener.setter
    def listener(self, listener: Listener):
        self.events.listener = listener

    @property
    def state(self):
        return self.connection.state

    @property
    def connected(self) -> bool:
        return self.connection.connected

    @property
    def current_device(self):
        return self.connection.device

    @property
    def devices(self) -> tuple:
        return self.registry.snapshot()

    @property
    def discovering(self) -> bool:
        return self.radio.discovering

    def check_radio(self) -> bool:
        """
        Determines if the radio can be used, notifying the listener when it can't.
        """
        try:
            self.radio.check()
        except RadioUnavailableError as e:
            logger.warning("%s" % e)
            self.events.post('on_radio_unavailable')
            return False
        except RadioDisabledError as e:
            logger.info("%s" % e)
            self.events.post('on_radio_disabled')
            return False
        return True

    def try_connection(self) -> bool:
        """
        Offers the paired devices to the listener, or scans for devices when none are paired.
        :return: False if the radio cannot be used.
        """
        if not self.check_radio():
            return False
        self.registry.clear()
        self.registry.add_paired(d for d in self.radio.paired_devices() if d.name and d.address)
        logger.debug("paired devices: %d" % len(self.registry))
        if len(self.registry):
            self._devices_found()
        else:
            self.start_discovery()
        return True

    def start_discovery(self) -> bool:
        """
        Scans for nearby devices. When the scan finishes, the listener receives on_discovery_finished followed by
        on_devices_found or on_no_devices_found.
        :return: False if the radio cannot be used.
        """
        if not self.check_radio():
            return False
        self.registry.clear()
        self.events.post('on_discovery_started')
        with self._discovery_lock:
            self._unsubscribe()
        # the old scan may be delivering an event to _discovery_event, which takes the lock
        if self.radio.discovering:
            self.radio.cancel_discovery()
        with self._discovery_lock:
            self._subscribe()
        if not self.radio.start_discovery():
            logger.warning("the radio did not start discovery")
            self._discovery_finished()
        return True

    def cancel_discovery(self) -> bool:
        """ stops a scan in progress. No discovery events are posted for it. """
        with self._discovery_lock:
            self._unsubscribe()
        return self.radio.cancel_discovery()

    def connect_to(self, device):
        """ connects to the device, abandoning any scan. """
        if device is None:
            return
        with self._discovery_lock:
            self._unsubscribe()
        self.connection.connect_to(device, self.profile, self.security)

    def start_listening(self):
        """ waits for the peer to connect. """
        self.connection.start_listening()

    def disconnect(self):
        self.connection.disconnect()

    def stop(self):
        """ Shuts down, ending any scan. No events are delivered after this returns. """
        with self._discovery_lock:
            self._unsubscribe()
        if self.radio.discovering:
            self.radio.cancel_discovery()
        self.connection.stop()

    def send(self, data, append_terminator=False) -> bool:
        """
        Sends text or bytes to the connected peer.
        :param data: str (sent as UTF-8) or bytes-like
        :param append_terminator: when True, CR LF is sent after the data
        :return: False when not connected, or the write failed
        """
        if isinstance(data, str):
            data = data.encode('utf-8')
        payload = bytes(data) + CRLF if append_terminator else bytes(data)
        return self.connection.write(payload)

    def _subscribe(self):
        if not self._subscribed:
            self.radio.discovery.add(self._discovery_event)
            self._subscribed = True

    def _unsubscribe(self):
        if self._subscribed:
            self.radio.discovery.remove(self._discovery_event)
            self._subscribed = False

    def _discovery_event(self, event):
        if isinstance(event, DeviceFoundEvent):
            self.registry.add_discovered(event.device)
        elif isinstance(event, DiscoveryFinishedEvent):
            self._discovery_finished()

    def _discovery_finished(self):
        with self._discovery_lock:
            if not self._subscribed:
                return
            self._unsubscribe()
        logger.debug("discovery finished: %d devices" % len(self.registry))
        self.events.post('on_discovery_finished')
        self._devices_found()

    def _devices_found(self):
        devices = list(self.registry.snapshot())
        if devices:
            self.events.post('on_devices_found', devices, ConnectionCallback(self))
        else:
            self.events.post('on_no_devices_found')
