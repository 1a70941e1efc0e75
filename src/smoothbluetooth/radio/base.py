import uuid
from abc import abstractmethod
from enum import Enum

from smoothbluetooth.channel import ClientChannel, ServerChannel
from smoothbluetooth.support.events import EventSource


class RadioError(Exception):
    """ Indicates the radio cannot be used. """


class RadioUnavailableError(RadioError):
    """ The platform has no bluetooth adapter. """


class RadioDisabledError(RadioError):
    """ The bluetooth adapter is present but switched off. """


class ServiceProfile(Enum):
    """
    The kind of software running on the peer, which selects the service identifier used
    both for listening and for connecting.
    """
    ANDROID_DEVICE = uuid.UUID('fa87c0d0-afac-11de-8a39-0800200c9a66')
    OTHER_DEVICE = uuid.UUID('00001101-0000-1000-8000-00805f9b34fb')     # serial port profile

    @property
    def service_id(self) -> uuid.UUID:
        return self.value


class Security(Enum):
    """ whether the link is authenticated and encrypted. """
    SECURE = 'secure'
    INSECURE = 'insecure'


class DiscoveryEvent:
    """ base class for discovery notifications. """


class DeviceFoundEvent(DiscoveryEvent):
    """ A device was found by the scan in progress. """
    def __init__(self, device):
        self.device = device


class DiscoveryFinishedEvent(DiscoveryEvent):
    """ The scan has completed. A cancelled scan does not fire this. """


class Radio:
    """
    The platform's bluetooth adapter.

    Discovery notifications are posted to the `discovery` event source, as DeviceFoundEvent for each
    device found and a single DiscoveryFinishedEvent once the scan ends. Interested parties subscribe
    with discovery.add(handler) and unsubscribe with discovery.remove(handler).
    """

    def __init__(self):
        self.discovery = EventSource()

    @property
    @abstractmethod
    def available(self) -> bool:
        """ determines if the platform has a bluetooth adapter. """
        raise NotImplementedError

    @property
    @abstractmethod
    def enabled(self) -> bool:
        """ determines if the adapter is switched on. """
        raise NotImplementedError

    def check(self):
        """
        Raises RadioUnavailableError when there is no adapter, or RadioDisabledError when it is switched off.
        """
        if not self.available:
            raise RadioUnavailableError("no bluetooth adapter")
        if not self.enabled:
            raise RadioDisabledError("bluetooth adapter is switched off")

    @abstractmethod
    def paired_devices(self) -> list:
        """ lists the devices bonded with the adapter, as Device instances with paired set. """
        raise NotImplementedError

    @abstractmethod
    def start_discovery(self) -> bool:
        """
        Starts scanning for nearby devices. Returns at once.
        :return: True if the scan was started.
        """
        raise NotImplementedError

    @abstractmethod
    def cancel_discovery(self) -> bool:
        """
        Stops a scan in progress. No discovery events are fired for it once this returns.
        :return: True if the request was accepted, including when no scan was running.
        """
        raise NotImplementedError

    @property
    @abstractmethod
    def discovering(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def listen(self, profile: ServiceProfile, security: Security) -> ServerChannel:
        """
        Opens a listening endpoint for the given service.
        Raises IOError when the endpoint cannot be opened.
        """
        raise NotImplementedError

    @abstractmethod
    def client(self, device, profile: ServiceProfile, security: Security) -> ClientChannel:
        """
        Creates an unconnected channel to the given device and service.
        Raises IOError when the channel cannot be created.
        """
        raise NotImplementedError
