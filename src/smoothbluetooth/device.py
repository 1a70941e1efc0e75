"""
Devices that a connection can be made to, and the registry of candidates presented to the consumer.
"""
import logging
import threading

logger = logging.getLogger(__name__)


class Device:
    """
    A peer device. Two devices are the same device when they have the same address,
    regardless of name or pairing.

    >>> Device("hc-05", "00:11:22:33:44:55") == Device("other", "00:11:22:33:44:55", True)
    True
    """
    __slots__ = ('_name', '_address', '_paired')

    def __init__(self, name, address, paired=False):
        """
        :param name: the human readable name of the device. May be empty when the peer did not announce one.
        :param address: the hardware address, which uniquely identifies the device.
        :param paired: True if the device is bonded with the local adapter.
        """
        self._name = name
        self._address = address
        self._paired = bool(paired)

    @property
    def name(self) -> str:
        return self._name

    @property
    def address(self) -> str:
        return self._address

    @property
    def paired(self) -> bool:
        return self._paired

    def __eq__(self, other):
        return isinstance(other, Device) and other._address == self._address

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash(self._address)

    def __repr__(self):
        return "Device(%r, %r, paired=%r)" % (self._name, self._address, self._paired)

    def __str__(self):
        return "%s [%s]" % (self._name, self._address) if self._name else self._address


class DeviceRegistry:
    """
    The ordered list of candidate devices: paired devices first, in the order the platform lists them,
    followed by discovered devices in the order they were found.
    No two entries share an address.

    Discovery notifications arrive on the radio's thread while the consumer reads the list on
    another, so all access is guarded by a lock.
    """

    def __init__(self):
        self._paired = []
        self._discovered = []
        self._lock = threading.Lock()

    def add_paired(self, devices):
        """
        Replaces the paired devices. Discovered devices that are now listed as paired are dropped
        from the discovered part of the list.
        :param devices: iterable of Device, in platform order.
        """
        paired = []
        seen = set()
        for device in devices:
            if device.address not in seen:
                seen.add(device.address)
                paired.append(device)
        with self._lock:
            self._paired = paired
            self._discovered = [d for d in self._discovered if d.address not in seen]

    def add_discovered(self, device: Device) -> bool:
        """
        Appends a discovered device unless a device with the same address is already listed.
        :return: True if the device was added.
        """
        with self._lock:
            if self._find(device.address) is not None:
                return False
            self._discovered.append(device)
        logger.debug("device found: %s" % device)
        return True

    def clear(self):
        with self._lock:
            self._paired = []
            self._discovered = []

    def snapshot(self) -> tuple:
        """ the current devices, paired first. """
        with self._lock:
            return tuple(self._paired) + tuple(self._discovered)

    def find(self, address):
        """ retrieves the device with the given address, or None. """
        with self._lock:
            return self._find(address)

    def _find(self, address):
        for device in self._paired + self._discovered:
            if device.address == address:
                return device
        return None

    def __contains__(self, item):
        address = item.address if isinstance(item, Device) else item
        return self.find(address) is not None

    def __iter__(self):
        return iter(self.snapshot())

    def __len__(self):
        with self._lock:
            return len(self._paired) + len(self._discovered)
