"""
Sine generator controller for Rigol DG-series function generators.
"""

import math
from enum import Enum
from typing import Optional

from .transport import SocketTransport


class Channel(Enum):
    """Generator output channel."""
    CH1 = 1
    CH2 = 2

    @property
    def token(self) -> str:
        return str(self.value)


def coerce_phase(phase: float) -> float:
    """Wrap a phase in degrees into [0, 360)."""
    phase = phase - 360.0 * math.floor(phase / 360.0)
    # floor() rounding can land exactly on 360 for tiny negative inputs
    return 0.0 if phase >= 360.0 else phase


class SineGenerator:
    """
    SCPI sine generator controller.

    Every setter returns True on success and stops at the first failed write.
    """

    def __init__(self, transport: SocketTransport):
        self.transport = transport

    @property
    def attached(self) -> bool:
        return self.transport.connected

    def attach(self, address: str) -> bool:
        """Connect to ``address`` and load a default sine on both outputs."""
        if not self.transport.connect(address):
            return False
        self.setup_default()
        return True

    def detach(self) -> None:
        self.transport.close()

    def _write(self, cmd: str) -> bool:
        return self.transport.write(cmd)

    def setup_default(self) -> None:
        # 1 kHz, 1 Vpp, no offset; channel 2 in quadrature
        self._write(":SOUR1:APPL:SIN 1000,1,0,0")
        self._write(":SOUR2:APPL:SIN 1000,1,0,90")

    def set_channel(
        self,
        ch: Channel,
        freq: Optional[float] = None,
        vpp: Optional[float] = None,
        voffs: Optional[float] = None,
        phase: Optional[float] = None,
    ) -> bool:
        """
        Set any combination of frequency, amplitude, offset and phase.

        Parameters left as None are not sent. Parameters already written are
        not rolled back when a later one fails.

        Parameters
        ----------
        ch : Channel
            Output channel
        freq : float, optional
            Frequency in Hz
        vpp : float, optional
            Amplitude in volts peak-to-peak
        voffs : float, optional
            DC offset in volts
        phase : float, optional
            Phase in degrees, wrapped into [0, 360)
        """
        if freq is not None and not self.set_channel_freq(ch, freq):
            return False
        if vpp is not None and not self.set_channel_vpp(ch, vpp):
            return False
        if voffs is not None and not self.set_channel_voffs(ch, voffs):
            return False
        if phase is not None and not self.set_channel_phase(ch, phase):
            return False
        return True

    def set_channel_freq(self, ch: Channel, freq: float) -> bool:
        return self._write(f":SOUR{ch.token}:FREQ {freq}")

    def set_channel_vpp(self, ch: Channel, vpp: float) -> bool:
        return self._write(f":SOUR{ch.token}:VOLT {vpp}")

    def set_channel_voffs(self, ch: Channel, voffs: float) -> bool:
        return self._write(f":SOUR{ch.token}:VOLT:OFFS {voffs}")

    def set_channel_phase(self, ch: Channel, phase: float) -> bool:
        return self._write(f":SOUR{ch.token}:PHAS {coerce_phase(phase)}")

    def align_channel(self, ch: Channel) -> bool:
        """Re-align the phase of both outputs to this channel."""
        return self._write(f":SOUR{ch.token}:PHAS:SYNC")

    def set_channel_output(self, ch: Channel, enabled: bool) -> bool:
        return self._write(f":OUTP{ch.token} {'ON' if enabled else 'OFF'}")
