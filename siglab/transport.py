"""
Socket transport for SCPI instruments.

Instruments are reached as raw VISA SOCKET resources, so any LAN instrument
that listens on a plain TCP port works without an NI-VISA install when the
pyvisa-py backend is selected.

Usage:

    rm = pyvisa.ResourceManager("@py")
    link = SocketTransport(rm)
    if link.connect("192.168.0.197:5025"):
        link.write("C1:TRACE ON")
        reply = link.query("C1:VDIV?")   # bytes, or None on failure
    link.close()
"""

import re
import sys
from typing import Optional, Tuple

import pyvisa


# [scheme://]ipv4:port[/]
_ADDRESS_RE = re.compile(
    r'^(?:[a-zA-Z]+://)?([0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}):([0-9]{1,5})/?$'
)

TERMINATOR = '\n'


def parse_address(address: str) -> Optional[Tuple[str, int]]:
    """
    Split an instrument address into host and port.

    Parameters
    ----------
    address : str
        Address such as '192.168.0.197:5025' or 'tcp://192.168.0.197:5025/'

    Returns
    -------
    (host, port) or None if the address is not of the accepted form.
    """
    match = _ADDRESS_RE.match(address.strip())
    if not match:
        return None

    host, port = match.group(1), int(match.group(2))
    if any(int(octet) > 255 for octet in host.split('.')) or not 0 < port < 65536:
        return None
    return host, port


def resource_name(host: str, port: int) -> str:
    """VISA resource string for a raw TCP socket."""
    return f"TCPIP0::{host}::{port}::SOCKET"


class SocketTransport:
    """
    Line-oriented connection to one instrument.

    Every operation reports failure through its return value instead of
    raising, so callers can treat an unreachable or misbehaving instrument
    as data.
    """

    def __init__(self, rm: pyvisa.ResourceManager, debug_level: int = 0):
        """
        Args:
            rm: Resource manager used to open the socket. The caller owns it.
            debug_level: 0 = silent, 1 = print SCPI traffic to stderr
        """
        self.rm = rm
        self.debug_level = debug_level
        self.inst = None
        self.address: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.inst is not None

    def connect(self, address: str) -> bool:
        """Open the socket resource for ``address``. Returns True on success."""
        self.close()

        parsed = parse_address(address)
        if parsed is None:
            return False

        resource = resource_name(*parsed)
        if self.debug_level >= 1:
            print(f"< Using VISA resource: {resource}", file=sys.stderr)

        try:
            inst = self.rm.open_resource(resource)
            inst.read_termination = TERMINATOR
            inst.write_termination = ''
            inst.timeout = 120_000
        except (pyvisa.errors.Error, OSError, ValueError) as e:
            if self.debug_level >= 1:
                print(f"< Connection to {resource} failed: {e}", file=sys.stderr)
            return False

        self.inst = inst
        self.address = address
        return True

    def close(self) -> None:
        """Release the socket. Safe to call when not connected."""
        if self.inst is None:
            return
        try:
            self.inst.close()
        except (pyvisa.errors.Error, OSError):
            pass
        finally:
            self.inst = None
            self.address = None

    def write(self, cmd: str) -> bool:
        """Send one command line. The line terminator is appended if absent."""
        if self.inst is None:
            return False

        if not cmd.endswith(TERMINATOR):
            cmd += TERMINATOR
        if self.debug_level >= 1:
            print(f"> {cmd.rstrip()}", file=sys.stderr)

        try:
            self.inst.write_raw(cmd.encode('ascii'))
        except (pyvisa.errors.Error, OSError, UnicodeEncodeError):
            return False
        return True

    def query(self, cmd: str) -> Optional[bytes]:
        """Send a query and return the raw reply, or None if nothing came back."""
        if not self.write(cmd):
            return None

        try:
            reply = self.inst.read_raw()
        except (pyvisa.errors.Error, OSError):
            return None

        if self.debug_level >= 1:
            print(f"< {reply.decode('ascii', errors='replace').strip()}", file=sys.stderr)
        return reply or None
