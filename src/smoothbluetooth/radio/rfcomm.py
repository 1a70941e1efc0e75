"""
A Radio for Linux (BlueZ). Channels are RFCOMM sockets; adapter state, paired devices and discovery
come from the bluetoothctl command line tool.

BlueZ does not map service identifiers to RFCOMM channels through the socket API, so each service profile
is offered on, and connected to, a configured channel number.
"""
import logging
import re
import socket
import subprocess
import threading

from smoothbluetooth.channel import SocketServerChannel, SocketClientChannel
from smoothbluetooth.device import Device
from smoothbluetooth.radio.base import Radio, ServiceProfile, Security, DeviceFoundEvent, DiscoveryFinishedEvent
from smoothbluetooth.support.threads import BackgroundThread

logger = logging.getLogger(__name__)

# from <bluetooth/rfcomm.h>, not exported by the socket module
SOL_RFCOMM = 18
RFCOMM_LM = 0x03
RFCOMM_LM_AUTH = 0x0002
RFCOMM_LM_ENCRYPT = 0x0004
RFCOMM_LM_SECURE = 0x0020

BDADDR_ANY = getattr(socket, 'BDADDR_ANY', '00:00:00:00:00:00')

COMMAND_TIMEOUT = 10

device_pattern = re.compile(r'^Device (([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2})\s*(.*)$')
new_device_pattern = re.compile(r'^\[NEW\] Device (([0-9A-Fa-f]{2}:){5}[0-9A-Fa-f]{2})\s*(.*)$')
ansi_pattern = re.compile(r'\x1b\[[0-9;]*[A-Za-z]|\x01|\x02')


def rfcomm_supported() -> bool:
    """ determines if this Python build exposes RFCOMM sockets. """
    return hasattr(socket, 'AF_BLUETOOTH') and hasattr(socket, 'BTPROTO_RFCOMM')


def link_mode(security: Security) -> int:
    """
    >>> link_mode(Security.INSECURE)
    0
    >>> link_mode(Security.SECURE) == RFCOMM_LM_AUTH | RFCOMM_LM_ENCRYPT | RFCOMM_LM_SECURE
    True
    """
    return RFCOMM_LM_AUTH | RFCOMM_LM_ENCRYPT | RFCOMM_LM_SECURE if security is Security.SECURE else 0


def strip_ansi(line):
    """
    >>> strip_ansi('\\x1b[0;92m[NEW]\\x1b[0m Device')
    '[NEW] Device'
    """
    return ansi_pattern.sub('', line)


def parse_devices(output, pattern=device_pattern, paired=False):
    """
    Parses the devices listed by bluetoothctl, one per line, skipping anything else.
    A device that announced no name is given its address as the name.

    >>> parse_devices('Device 00:11:22:33:44:55 hc-05\\nnoise')
    [Device('hc-05', '00:11:22:33:44:55', paired=False)]
    """
    devices = []
    for line in output.splitlines():
        match = pattern.match(strip_ansi(line).strip())
        if match:
            address, name = match.group(1).upper(), match.group(3).strip()
            devices.append(Device(name or address, address, paired))
    return devices


class ScanThread(BackgroundThread):
    """
    Runs a bluetoothctl scan, firing DeviceFoundEvent for each new device it reports, and
    DiscoveryFinishedEvent when the scan ends. A cancelled scan fires nothing more once cancel() returns.
    """

    def __init__(self, process, events):
        super().__init__(name="bluetoothctl-scan", log=logger)
        self.process = process
        self.events = events
        self.cancelled = False
        self._fire_lock = threading.RLock()

    def loop(self):
        line = self.process.stdout.readline()
        if not line:
            self.signal_stop()
            return
        for device in parse_devices(line, new_device_pattern):
            self._fire(DeviceFoundEvent(device))

    def shutdown(self):
        self.process.wait()
        self.process.stdout.close()
        logger.debug("scan finished with exit code %s" % self.process.returncode)
        self._fire(DiscoveryFinishedEvent())

    def _fire(self, event):
        with self._fire_lock:
            if not self.cancelled:
                self.events.fire(event)

    def cancel(self):
        """ waits for an event being fired to be handled, then silences the scan and stops bluetoothctl. """
        with self._fire_lock:
            self.cancelled = True
        if self.process.poll() is None:
            self.process.terminate()


class RfcommRadio(Radio):
    """
    :param settings: the rfcomm settings, as returned by config.rfcomm_settings()
    """

    def __init__(self, settings: dict):
        super().__init__()
        self.channels = settings['channels']
        self.service_name = settings['service_name']
        self.bluetoothctl = settings['bluetoothctl']
        self.scan_timeout = settings['scan_timeout']
        self._scan = None
        self._scan_lock = threading.Lock()

    def _run(self, *args):
        """ runs bluetoothctl with the given arguments and returns its output. Returns '' when it can't be run. """
        try:
            result = subprocess.run((self.bluetoothctl,) + args, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL,
                                    universal_newlines=True, timeout=COMMAND_TIMEOUT)
            return result.stdout
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning("unable to run %s %s: %s" % (self.bluetoothctl, ' '.join(args), e))
            return ''

    @property
    def available(self) -> bool:
        return rfcomm_supported() and 'Controller' in self._run('show')

    @property
    def enabled(self) -> bool:
        return 'Powered: yes' in self._run('show')

    def paired_devices(self) -> list:
        return parse_devices(self._run('devices', 'Paired'), paired=True)

    def start_discovery(self) -> bool:
        with self._scan_lock:
            if self._scan is not None and self._scan.alive:
                return True
            try:
                process = subprocess.Popen([self.bluetoothctl, '--timeout', str(self.scan_timeout), 'scan', 'on'],
                                           stdout=subprocess.PIPE, stderr=subprocess.DEVNULL,
                                           universal_newlines=True)
            except OSError as e:
                logger.warning("unable to start discovery: %s" % e)
                return False
            self._scan = ScanThread(process, self.discovery)
            self._scan.start()
        return True

    def cancel_discovery(self) -> bool:
        with self._scan_lock:
            scan = self._scan
            self._scan = None
        if scan is not None:
            scan.cancel()
        return True

    @property
    def discovering(self) -> bool:
        scan = self._scan
        return scan is not None and scan.alive

    def _socket(self, security):
        sock = socket.socket(socket.AF_BLUETOOTH, socket.SOCK_STREAM, socket.BTPROTO_RFCOMM)
        try:
            sock.setsockopt(SOL_RFCOMM, RFCOMM_LM, link_mode(security))
        except OSError as e:
            logger.debug("unable to set link mode %s: %s" % (security.value, e))
        return sock

    def listen(self, profile: ServiceProfile, security: Security) -> SocketServerChannel:
        channel = self.channels[profile]
        sock = self._socket(security)
        try:
            sock.bind((BDADDR_ANY, channel))
            sock.listen(1)
        except OSError:
            sock.close()
            raise
        logger.info("%s listening for %s on RFCOMM channel %d" % (self.service_name, profile.service_id, channel))
        return SocketServerChannel(sock, self._remote_device)

    def client(self, device, profile: ServiceProfile, security: Security) -> SocketClientChannel:
        return SocketClientChannel(self._socket(security), device, (device.address, self.channels[profile]))

    def _remote_device(self, address):
        """ builds the Device for an accepted peer, using the paired name when there is one. """
        bdaddr = address[0].upper()
        for device in self.paired_devices():
            if device.address == bdaddr:
                return device
        return Device(bdaddr, bdaddr)
