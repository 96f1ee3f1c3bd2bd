"""
Oscilloscope controller for Siglent SDS-series scopes.

Commands are plain SCPI text sent over a ``SocketTransport``. Every setter
returns True on success and False as soon as one command fails; queries that
cannot be parsed return NaN rather than raising.

Example:
    scope = Oscilloscope(SocketTransport(rm))
    if scope.attach('192.168.0.197:5025'):
        scope.set_channel_volts(Channel.CH1, VoltsPerDiv.V_100mV, offset=0.0)
        scale = scope.read_scale(Channel.CH1)
        vpp = scope.measure(Channel.CH1, MeasParam.PKPK)
        tcapture = scope.set_timebase(4 / 1e3)   # pick a timebase for 4 cycles at 1 kHz
    scope.detach()
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Optional, Sequence, Tuple, overload

from .transport import SocketTransport


VERTICAL_DIVISIONS = 8
TIME_DIVISIONS = 14

# Largest single scale change accepted by apply_adjustment (one decade)
MAX_ADJUST = 3


class Channel(Enum):
    """Analog input channel."""
    CH1 = 1
    CH2 = 2
    CH3 = 3
    CH4 = 4

    @property
    def token(self) -> str:
        return f"C{self.value}"


class Coupling(Enum):
    AC = 'AC'
    DC = 'DC'


class EdgeType(Enum):
    RISING = 'POS'
    FALLING = 'NEG'


class TriggerMode(Enum):
    STOP = 'STOP'
    NORMAL = 'NORM'
    AUTO = 'AUTO'
    SINGLE = 'SINGLE'


class Unit(Enum):
    V = 'V'
    A = 'A'


class MeasParam(Enum):
    """Single-channel measurement, value is the PAVA token."""
    PKPK = 'PKPK'
    MAX = 'MAX'
    MIN = 'MIN'
    AMPL = 'AMPL'
    TOP = 'TOP'
    BASE = 'BASE'
    CMEAN = 'CMEAN'
    MEAN = 'MEAN'
    RMS = 'RMS'
    CRMS = 'CRMS'
    OVSN = 'OVSN'
    FPRE = 'FPRE'
    OVSP = 'OVSP'
    RPRE = 'RPRE'
    PER = 'PER'
    FREQ = 'FREQ'
    PWID = 'PWID'
    NWID = 'NWID'
    RISE = 'RISE'
    FALL = 'FALL'
    WID = 'WID'
    DUTY = 'DUTY'
    NDUTY = 'NDUTY'


class DelayParam(Enum):
    """Two-channel delay measurement, value is the MEAD token."""
    PHA = 'PHA'      # phase
    FRR = 'FRR'      # first rising to first rising
    FRF = 'FRF'
    FFR = 'FFR'
    FFF = 'FFF'      # first falling to first falling
    LRR = 'LRR'
    LRF = 'LRF'
    LFR = 'LFR'
    LFF = 'LFF'
    SKEW = 'SKEW'


class VoltsPerDiv(Enum):
    """Vertical scale in volts per division (at the probe tip)."""
    V_500uV = 500e-6
    V_1mV = 1e-3
    V_2mV = 2e-3
    V_5mV = 5e-3
    V_10mV = 10e-3
    V_20mV = 20e-3
    V_50mV = 50e-3
    V_100mV = 100e-3
    V_200mV = 200e-3
    V_500mV = 500e-3
    V_1V = 1.0
    V_2V = 2.0
    V_5V = 5.0
    V_10V = 10.0
    V_20V = 20.0
    V_50V = 50.0
    V_100V = 100.0


class TimeDiv(Enum):
    """Horizontal scale in seconds per division."""
    T_1nS = 1e-9
    T_2nS = 2e-9
    T_5nS = 5e-9
    T_10nS = 10e-9
    T_20nS = 20e-9
    T_50nS = 50e-9
    T_100nS = 100e-9
    T_200nS = 200e-9
    T_500nS = 500e-9
    T_1uS = 1e-6
    T_2uS = 2e-6
    T_5uS = 5e-6
    T_10uS = 10e-6
    T_20uS = 20e-6
    T_50uS = 50e-6
    T_100uS = 100e-6
    T_200uS = 200e-6
    T_500uS = 500e-6
    T_1mS = 1e-3
    T_2mS = 2e-3
    T_5mS = 5e-3
    T_10mS = 10e-3
    T_20mS = 20e-3
    T_50mS = 50e-3
    T_100mS = 100e-3
    T_200mS = 200e-3
    T_500mS = 500e-3
    T_1S = 1.0
    T_2S = 2.0
    T_5S = 5.0
    T_10S = 10.0
    T_20S = 20.0
    T_50S = 50.0
    T_100S = 100.0


class ScaleEntry(NamedTuple):
    vdiv: VoltsPerDiv
    volts: float
    token: str


class TimeEntry(NamedTuple):
    tdiv: TimeDiv
    seconds: float
    token: str


# Scale tables, one per probe attenuation. Order matters: one index is one
# auto-ranging step and volts must increase strictly.
VOLTS_1X: Tuple[ScaleEntry, ...] = tuple(ScaleEntry(v, v.value, tok) for v, tok in (
    (VoltsPerDiv.V_500uV, '500UV'),
    (VoltsPerDiv.V_1mV, '1MV'),
    (VoltsPerDiv.V_2mV, '2MV'),
    (VoltsPerDiv.V_5mV, '5MV'),
    (VoltsPerDiv.V_10mV, '10MV'),
    (VoltsPerDiv.V_20mV, '20MV'),
    (VoltsPerDiv.V_50mV, '50MV'),
    (VoltsPerDiv.V_100mV, '100MV'),
    (VoltsPerDiv.V_200mV, '200MV'),
    (VoltsPerDiv.V_500mV, '500MV'),
    (VoltsPerDiv.V_1V, '1V'),
    (VoltsPerDiv.V_2V, '2V'),
    (VoltsPerDiv.V_5V, '5V'),
    (VoltsPerDiv.V_10V, '10V'),
))

VOLTS_10X: Tuple[ScaleEntry, ...] = tuple(ScaleEntry(v, v.value, tok) for v, tok in (
    (VoltsPerDiv.V_5mV, '5MV'),
    (VoltsPerDiv.V_10mV, '10MV'),
    (VoltsPerDiv.V_20mV, '20MV'),
    (VoltsPerDiv.V_50mV, '50MV'),
    (VoltsPerDiv.V_100mV, '100MV'),
    (VoltsPerDiv.V_200mV, '200MV'),
    (VoltsPerDiv.V_500mV, '500MV'),
    (VoltsPerDiv.V_1V, '1V'),
    (VoltsPerDiv.V_2V, '2V'),
    (VoltsPerDiv.V_5V, '5V'),
    (VoltsPerDiv.V_10V, '10V'),
    (VoltsPerDiv.V_20V, '20V'),
    (VoltsPerDiv.V_50V, '50V'),
    (VoltsPerDiv.V_100V, '100V'),
))

# Range of the input stage itself, independent of the probe
V_UNSCALED_MIN = VOLTS_1X[0].volts
V_UNSCALED_MAX = VOLTS_1X[-1].volts

TIMEBASE: Tuple[TimeEntry, ...] = tuple(TimeEntry(t, t.value, tok) for t, tok in (
    (TimeDiv.T_1nS, '1NS'), (TimeDiv.T_2nS, '2NS'), (TimeDiv.T_5nS, '5NS'),
    (TimeDiv.T_10nS, '10NS'), (TimeDiv.T_20nS, '20NS'), (TimeDiv.T_50nS, '50NS'),
    (TimeDiv.T_100nS, '100NS'), (TimeDiv.T_200nS, '200NS'), (TimeDiv.T_500nS, '500NS'),
    (TimeDiv.T_1uS, '1US'), (TimeDiv.T_2uS, '2US'), (TimeDiv.T_5uS, '5US'),
    (TimeDiv.T_10uS, '10US'), (TimeDiv.T_20uS, '20US'), (TimeDiv.T_50uS, '50US'),
    (TimeDiv.T_100uS, '100US'), (TimeDiv.T_200uS, '200US'), (TimeDiv.T_500uS, '500US'),
    (TimeDiv.T_1mS, '1MS'), (TimeDiv.T_2mS, '2MS'), (TimeDiv.T_5mS, '5MS'),
    (TimeDiv.T_10mS, '10MS'), (TimeDiv.T_20mS, '20MS'), (TimeDiv.T_50mS, '50MS'),
    (TimeDiv.T_100mS, '100MS'), (TimeDiv.T_200mS, '200MS'), (TimeDiv.T_500mS, '500MS'),
    (TimeDiv.T_1S, '1S'), (TimeDiv.T_2S, '2S'), (TimeDiv.T_5S, '5S'),
    (TimeDiv.T_10S, '10S'), (TimeDiv.T_20S, '20S'), (TimeDiv.T_50S, '50S'),
    (TimeDiv.T_100S, '100S'),
))


# Reply shapes (COMM_HEADER SHORT)
_NUMBER = r'([+\-.0-9E]+)'
_ATTN_RE = re.compile(r'^C[1-4]:ATT[A-Z]* ' + _NUMBER + r'\s*$', re.IGNORECASE)
_VDIV_RE = re.compile(r'^C[1-4]:V[A-Z_]* ' + _NUMBER + r'(?:V|A)\s*$')
_OFST_RE = re.compile(r'^C[1-4]:O[A-Z_]* ' + _NUMBER + r'(?:V|A)\s*$')


def _pava_pattern(param: MeasParam) -> re.Pattern:
    # Only a reply for the parameter asked for counts
    return re.compile(r'^C[1-4]:PAVA ' + re.escape(param.value) + ',' + _NUMBER + r'[a-zA-Z%]*\s*$')


def _mead_pattern(param: DelayParam) -> re.Pattern:
    return re.compile(r'^C[1-4]-C[1-4]:MEAD ' + re.escape(param.value) + ',' + _NUMBER + r'[a-zA-Z]*\s*$')


def _parse_number(pattern: re.Pattern, reply: Optional[str]) -> float:
    """Pull the numeric field out of a reply, NaN if it is missing or malformed."""
    if reply is None:
        return math.nan
    match = pattern.match(reply)
    if not match:
        return math.nan
    try:
        return float(match.group(1))
    except ValueError:
        return math.nan


def volts_table(atten: float) -> Optional[Tuple[ScaleEntry, ...]]:
    """Scale table for a probe attenuation. Only exactly 1x and 10x are supported."""
    if atten == 1.0:
        return VOLTS_1X
    if atten == 10.0:
        return VOLTS_10X
    return None


def lookup_scale(table: Sequence[ScaleEntry], vdiv: VoltsPerDiv) -> Optional[ScaleEntry]:
    for entry in table:
        if entry.vdiv == vdiv:
            return entry
    return None


def lookup_timebase(tdiv: TimeDiv) -> Optional[TimeEntry]:
    for entry in TIMEBASE:
        if entry.tdiv == tdiv:
            return entry
    return None


def closest_index(table: Sequence[ScaleEntry], volts: float) -> int:
    """Index of the table entry nearest to ``volts`` (first one wins on ties)."""
    best = 0
    for i, entry in enumerate(table):
        if abs(entry.volts - volts) < abs(table[best].volts - volts):
            best = i
    return best


def step_index(index: int, step: int, size: int) -> Tuple[int, int]:
    """
    Move ``step`` positions from ``index`` within a table of ``size`` entries.

    Returns:
        (new_index, applied) where ``applied`` is the step actually taken after
        clamping to the table bounds.
    """
    new_index = min(max(index + step, 0), size - 1)
    return new_index, new_index - index


def select_timebase(tcapture: float) -> TimeEntry:
    """
    Fastest timebase whose full screen spans at least ``tcapture`` seconds.

    Falls back to the slowest entry when nothing is long enough.
    """
    target = tcapture / TIME_DIVISIONS
    for entry in TIMEBASE[:-1]:
        if target <= entry.seconds:
            return entry
    return TIMEBASE[-1]


@dataclass(frozen=True)
class ChannelScale:
    """Vertical scale of one channel as last read from the scope."""
    vdiv: float = 0.0
    offset: float = 0.0
    pp: float = 0.0       # full-scale peak-to-peak
    vmax: float = 0.0
    vmin: float = 0.0

    @classmethod
    def from_setting(cls, vdiv: float, offset: float) -> 'ChannelScale':
        pp = vdiv * VERTICAL_DIVISIONS
        return cls(vdiv=vdiv, offset=offset, pp=pp,
                   vmax=pp / 2.0 - offset, vmin=-pp / 2.0 - offset)


class Oscilloscope:
    """
    SCPI oscilloscope controller.

    Holds a transport but does not expose it; all traffic goes through the
    typed operations below.
    """

    def __init__(self, transport: SocketTransport):
        self.transport = transport

    @property
    def attached(self) -> bool:
        return self.transport.connected

    def attach(self, address: str) -> bool:
        """Connect to ``address`` and put the scope into its default state."""
        if not self.transport.connect(address):
            return False
        self.setup_default()
        return True

    def detach(self) -> None:
        self.transport.close()

    def _write(self, cmd: str) -> bool:
        return self.transport.write(cmd)

    def _query(self, cmd: str) -> Optional[str]:
        reply = self.transport.query(cmd)
        if reply is None:
            return None
        return reply.decode('ascii', errors='replace')

    def setup_default(self) -> None:
        """
        Put the scope into a known state.

        Individual failures are ignored here; the sweep configures everything
        it depends on again afterwards.
        """
        for cmd in (
            "COMM_HEADER SHORT",
            "ACQUIRE_WAY SAMPLING",
            "MEMORY_SIZE 14M",
            "SINXX_SAMPLE ON",
            "XY_DISPLAY OFF",
            "DTJN OFF",         # vectors
            "PESU OFF",         # persistence
            "MENU OFF",
            "CRMS OFF",         # cursors
            "HSMD OFF",         # history
            "DCST OFF",         # decode
            "DI:SWITCH OFF",
            "MATH:TRACE OFF",
            "MEASURE_CLEAR",
            "REF_CLOSE",
        ):
            self._write(cmd)

        self.set_timebase(TimeDiv.T_1mS, 0.0)

        for ch in Channel:
            self.set_channel_ex(ch, enabled=False, vdiv=VoltsPerDiv.V_1V, offset=0.0,
                                coupling=Coupling.DC, bwl=False, atten=10.0, invert=False)
            self.set_channel_unit(ch, Unit.V)
            self.set_channel_skew(ch, 0.0)

        self.set_edge_trigger(Channel.CH1, EdgeType.RISING, 0.0, Coupling.DC)
        self.set_trigger_mode(TriggerMode.AUTO)

    # ------------------- trigger -------------------

    def set_trigger_mode(self, mode: TriggerMode) -> bool:
        return self._write(f"TRMD {mode.value}")

    def set_edge_trigger(
        self,
        ch: Channel,
        edge: EdgeType,
        voltage: Optional[float],
        coupling: Coupling,
        holdoff: bool = False,
        t_holdoff: Optional[float] = None,
    ) -> bool:
        """
        Configure an edge trigger.

        Args:
            ch: Trigger source channel
            edge: Rising or falling edge
            voltage: Trigger level in volts at the probe tip, None to leave it
            coupling: Trigger coupling
            holdoff: Enable trigger holdoff
            t_holdoff: Holdoff time in seconds, used only when ``holdoff`` is set
        """
        # The level is programmed at 1x, so the probe factor must be known first
        atten = self.read_attenuation(ch)
        if math.isnan(atten) or atten <= 0.0:
            return False

        if holdoff and t_holdoff is not None:
            hold = f"ON, HV, {t_holdoff * 1e9}NS"
        else:
            hold = "OFF, HV, 80NS"

        if not self._write(f"TRCP {coupling.value}"):
            return False
        if voltage is not None and not self._write(f"{ch.token}:TRLV {voltage / atten}V"):
            return False
        if not self._write(f"TRSE EDGE, SR, {ch.token}, HT, {hold}"):
            return False
        return self._write(f"{ch.token}:TRSL {edge.value}")

    # ------------------- channels -------------------

    def set_channel_enable(self, ch: Channel, enabled: bool) -> bool:
        return self._write(f"{ch.token}:TRACE {'ON' if enabled else 'OFF'}")

    def set_channel_bwl(self, ch: Channel, enabled: bool) -> bool:
        """Enable or disable the 20 MHz bandwidth limit."""
        return self._write(f"{ch.token}:BWL {'ON' if enabled else 'OFF'}")

    def set_channel_invert(self, ch: Channel, inverted: bool) -> bool:
        return self._write(f"{ch.token}:INVS {'ON' if inverted else 'OFF'}")

    def set_channel_atten(self, ch: Channel, atten: float) -> bool:
        """Set the probe factor. Only 1x and 10x probes are supported."""
        if volts_table(atten) is None:
            return False
        return self._write(f"{ch.token}:ATTN {int(atten)}")

    def set_channel_coupling(self, ch: Channel, coupling: Coupling) -> bool:
        impedance = 'D1M' if coupling == Coupling.DC else 'A1M'
        return self._write(f"{ch.token}:CPL {impedance}")

    def set_channel_unit(self, ch: Channel, unit: Unit) -> bool:
        return self._write(f"{ch.token}:UNIT {unit.value}")

    def set_channel_skew(self, ch: Channel, skew: float) -> bool:
        """Set channel deskew in seconds (within +-100 ns). NaN leaves it unchanged."""
        if math.isnan(skew):
            return True
        if not -100e-9 <= skew <= 100e-9:
            return False
        return self._write(f"{ch.token}:SKEW {skew}")

    def set_channel_offset(self, ch: Channel, offset: float) -> bool:
        if math.isnan(offset):
            return False
        return self._write(f"{ch.token}:OFST {offset}V")

    def set_channel_volts(self, ch: Channel, vdiv: VoltsPerDiv, offset: Optional[float] = None) -> bool:
        """
        Set the vertical scale from the table matching the channel's probe.

        Args:
            ch: Channel to set
            vdiv: Scale at the probe tip; must exist in the 1x or 10x table in use
            offset: Offset voltage, or None to leave the offset alone
        """
        table = volts_table(self.read_attenuation(ch))
        if table is None:
            return False
        entry = lookup_scale(table, vdiv)
        if entry is None:
            return False

        if not self._write(f"{ch.token}:VDIV {entry.token}"):
            return False
        if offset is not None:
            return self.set_channel_offset(ch, offset)
        return True

    def set_channel_volts_exact(self, ch: Channel, vdiv: float, offset: Optional[float] = None) -> bool:
        """Set an arbitrary vertical scale, checked against the input stage range."""
        if not vdiv > 0.0:
            return False
        atten = self.read_attenuation(ch)
        if not atten > 0.0:
            return False
        unscaled = vdiv / atten
        if not V_UNSCALED_MIN <= unscaled <= V_UNSCALED_MAX:
            return False

        if not self._write(f"{ch.token}:VDIV {vdiv}"):
            return False
        if offset is not None:
            return self.set_channel_offset(ch, offset)
        return True

    def set_channel_ex(
        self,
        ch: Channel,
        enabled: bool,
        vdiv: VoltsPerDiv,
        offset: float,
        coupling: Coupling,
        bwl: bool,
        atten: float,
        invert: bool,
    ) -> bool:
        """
        Set several channel parameters with one call.

        Stops at the first failing command; earlier settings stay applied.
        Attenuation goes before the scale since the scale table depends on it.
        """
        return (self.set_channel_invert(ch, invert)
                and self.set_channel_atten(ch, atten)
                and self.set_channel_bwl(ch, bwl)
                and self.set_channel_coupling(ch, coupling)
                and self.set_channel_offset(ch, offset)
                and self.set_channel_volts(ch, vdiv)
                and self.set_channel_enable(ch, enabled))

    def read_attenuation(self, ch: Channel) -> float:
        return _parse_number(_ATTN_RE, self._query(f"{ch.token}:ATTN?"))

    def read_scale(self, ch: Channel) -> ChannelScale:
        """Read volts/div and offset. A failed read gives an all-zero scale."""
        vdiv = _parse_number(_VDIV_RE, self._query(f"{ch.token}:VDIV?"))
        if math.isnan(vdiv):
            return ChannelScale()
        offset = _parse_number(_OFST_RE, self._query(f"{ch.token}:OFST?"))
        if math.isnan(offset):
            return ChannelScale()
        return ChannelScale.from_setting(vdiv, offset)

    def apply_adjustment(self, ch: Channel, scale: ChannelScale, adjust: int) -> int:
        """
        Move the vertical scale by ``adjust`` table steps.

        Positive steps make the channel less sensitive. The request is limited
        to +-MAX_ADJUST and clamped at the ends of the table.

        Args:
            ch: Channel to adjust
            scale: Current scale of the channel, as returned by ``read_scale``
            adjust: Requested number of steps

        Returns:
            Number of steps actually applied, 0 if nothing was changed.
        """
        adjust = max(-MAX_ADJUST, min(MAX_ADJUST, adjust))
        if adjust == 0:
            return 0

        table = volts_table(self.read_attenuation(ch))
        if table is None:
            return 0

        index = closest_index(table, scale.vdiv)
        new_index, applied = step_index(index, adjust, len(table))
        if applied == 0:
            return 0
        if not self._write(f"{ch.token}:VDIV {table[new_index].token}"):
            return 0
        return applied

    # ------------------- timebase -------------------

    def set_time_delay(self, delay: float) -> bool:
        """Horizontal trigger delay in seconds. NaN leaves it unchanged."""
        if math.isnan(delay):
            return True
        return self._write(f"TRDL {delay}")

    @overload
    def set_timebase(self, tdiv: TimeDiv, delay: Optional[float] = None) -> bool: ...

    @overload
    def set_timebase(self, tdiv: float, delay: Optional[float] = None) -> float: ...

    def set_timebase(self, tdiv, delay=None):
        """
        Set the horizontal scale.

        Args:
            tdiv: Either a ``TimeDiv`` to select directly, or a capture time in
                seconds that the whole screen must at least span.
            delay: Horizontal delay in seconds, None to leave it unchanged

        Returns:
            For a ``TimeDiv``, True on success. For a capture time, the actual
            screen duration in seconds, or NaN if the scope rejected it.
        """
        if isinstance(tdiv, TimeDiv):
            entry = lookup_timebase(tdiv)
            if entry is None or not self._write(f"TDIV {entry.token}"):
                return False
            if delay is not None:
                return self.set_time_delay(delay)
            return True

        entry = select_timebase(tdiv)
        if self.set_timebase(entry.tdiv, delay):
            return entry.seconds * TIME_DIVISIONS
        return math.nan

    # ------------------- measurements -------------------

    def measure(self, ch: Channel, param: MeasParam) -> float:
        """Read one measurement from a channel, NaN if the scope has no valid value."""
        return _parse_number(_pava_pattern(param), self._query(f"{ch.token}:PAVA? {param.value}"))

    def measure_delay(self, ch_a: Channel, ch_b: Channel, param: DelayParam) -> float:
        """Read a delay or phase measurement between two channels (NaN if invalid)."""
        return _parse_number(_mead_pattern(param), self._query(f"{ch_a.token}-{ch_b.token}:MEAD? {param.value}"))
