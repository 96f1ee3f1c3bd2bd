"""
Measurement configuration records.

The defaults reproduce a typical bench setup: a 1 kHz to 100 kHz log sweep at
10 points per decade, 1 Vpp stimulus on generator output 1, the DUT input on
scope channel 1 and the DUT output on channel 2 (both AC coupled, 10x probes,
bandwidth limited), triggering on the input channel.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from siglab.scope import Channel as ScopeChannel, Coupling, EdgeType
from siglab.sinegen import Channel as GenChannel


class SweepKind(Enum):
    LOG = 'log'     # npoints per decade
    LIN = 'lin'     # npoints per sweep


class VoltageKind(Enum):
    VPP = 'vpp'
    VPK = 'vpk'


class TimeKind(Enum):
    PHASE = 'phase'
    DELAY = 'delay'


@dataclass
class FreqConfig:
    start: float = 1e3
    stop: float = 100e3
    sweep: SweepKind = SweepKind.LOG
    npoints: int = 10


@dataclass
class StimConfig:
    ch: GenChannel = GenChannel.CH1
    vtype: VoltageKind = VoltageKind.VPP
    amplitude: float = 1.0
    offset: float = 0.0

    @property
    def vpp(self) -> float:
        """Amplitude as programmed into the generator (always peak-to-peak)."""
        if self.vtype == VoltageKind.VPK:
            return 2.0 * self.amplitude
        return self.amplitude


@dataclass
class ChannelConfig:
    ch: ScopeChannel
    coupling: Coupling = Coupling.AC
    atten: float = 10.0
    bwl: bool = True


@dataclass
class TrigConfig:
    ch: ScopeChannel = ScopeChannel.CH1
    edge: EdgeType = EdgeType.RISING
    coupling: Coupling = Coupling.AC
    level: float = 0.0


@dataclass
class MeasConfig:
    vtype: VoltageKind = VoltageKind.VPP
    ttype: TimeKind = TimeKind.PHASE


@dataclass
class DwellConfig:
    """Settle time after each frequency change."""
    stable_screens: float = 2.0     # full screens of signal to wait for
    min_dwell_ms: float = 500.0


DWELL_PROFILES: Dict[str, DwellConfig] = {
    'fast': DwellConfig(1.5, 250.0),
    'mid': DwellConfig(2.0, 500.0),
    'slow': DwellConfig(2.5, 1000.0),
}


def dwell_profile(name: Optional[str] = None) -> DwellConfig:
    """Dwell settings by profile name; unknown names get the 'mid' profile."""
    profile = DWELL_PROFILES.get((name or 'mid').lower(), DWELL_PROFILES['mid'])
    return DwellConfig(profile.stable_screens, profile.min_dwell_ms)


@dataclass
class MeasurementSetup:
    """Everything a sweep needs besides the instrument addresses."""
    freq: FreqConfig = field(default_factory=FreqConfig)
    stim: StimConfig = field(default_factory=StimConfig)
    input: ChannelConfig = field(default_factory=lambda: ChannelConfig(ScopeChannel.CH1))
    output: ChannelConfig = field(default_factory=lambda: ChannelConfig(ScopeChannel.CH2))
    trig: TrigConfig = field(default_factory=TrigConfig)
    meas: MeasConfig = field(default_factory=MeasConfig)
    dwell: DwellConfig = field(default_factory=dwell_profile)
