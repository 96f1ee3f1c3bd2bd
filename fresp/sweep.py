"""
FreqResp: frequency response sweep with a sine generator and an oscilloscope.

The session owns both instrument connections. After ``initialize`` it can be
driven one frequency at a time (for live display) or all at once.

Usage:
    with FreqResp() as response:
        response.initialize('192.168.0.197:5025', '192.168.0.198:5555', MeasurementSetup())

        # One point at a time
        for sample in response:
            print(sample.freq, sample.gain_db, sample.time)

        # Or the whole sweep again, with a callback per point
        response.sweep(on_measurement=lambda s: print(s.freq))
        results = response.results
"""

import copy
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, List, Optional, Tuple

import numpy as np
import pyvisa

from siglab.scope import DelayParam, EdgeType, MeasParam, Oscilloscope, TriggerMode
from siglab.sinegen import SineGenerator
from siglab.transport import SocketTransport

from .autorange import ChannelRanger
from .config import (
    ChannelConfig,
    FreqConfig,
    MeasurementSetup,
    StimConfig,
    SweepKind,
    TimeKind,
    TrigConfig,
    VoltageKind,
)


FREQ_FUDGE = 1.001      # completion margin against rounding on the last point
MEAS_CYCLES = 4.0       # stimulus cycles on screen
HUNT_LIMIT = 3          # direction flips tolerated before accepting a reading
MAX_RANGE_ROUNDS = 32   # hard stop for the auto-ranging loop


class Status(Enum):
    SUCCESS = 0
    COMPLETE = 1


class FrespError(Exception):
    """Base class for measurement session errors."""


class ConfigError(FrespError, ValueError):
    """Measurement configuration rejected before touching the instruments."""


class InvalidFrequencyError(ConfigError):
    pass


class InvalidStimulusError(ConfigError):
    pass


class InvalidTriggerError(ConfigError):
    pass


class InvalidChannelError(ConfigError):
    pass


class ConnectError(FrespError, ConnectionError):
    """An instrument could not be reached."""


class SineGenConnectError(ConnectError):
    pass


class OscilloscopeConnectError(ConnectError):
    pass


class StateError(FrespError, RuntimeError):
    """Operation not allowed in the current session state."""


class NotInitializedError(StateError):
    pass


class AlreadyInitializedError(StateError):
    pass


class SweepCompletedError(StateError):
    pass


@dataclass(frozen=True)
class MeasurementSample:
    """One point of a frequency response."""
    freq: float
    mag_in: float
    mag_out: float
    gain_db: float
    time: float         # phase in degrees or delay in seconds, see tunit
    tunit: TimeKind

    @property
    def gain(self) -> float:
        """Linear gain (output / input)."""
        with np.errstate(divide='ignore', invalid='ignore'):
            return float(np.float64(self.mag_out) / np.float64(self.mag_in))


def gain_db(mag_in: float, mag_out: float) -> float:
    """
    Gain in dB, 20*log10(|out/in|).

    NaN inputs give NaN, a zero input gives +-inf; nothing raises.
    """
    with np.errstate(divide='ignore', invalid='ignore'):
        return float(20.0 * np.log10(np.abs(np.float64(mag_out) / np.float64(mag_in))))


def next_frequency(f: float, freq: FreqConfig) -> Optional[float]:
    """Frequency after ``f``, or None if the sweep kind has no next point."""
    match freq.sweep:
        case SweepKind.LOG:
            return f * 10.0 ** (1.0 / freq.npoints)
        case SweepKind.LIN:
            return f + (freq.stop - freq.start) / (freq.npoints - 1)
        case _:
            return None


def validate_freq(freq: FreqConfig) -> None:
    if not (math.isfinite(freq.start) and math.isfinite(freq.stop)):
        raise InvalidFrequencyError(f"Sweep bounds must be finite, got {freq.start} to {freq.stop}")
    if not 0.0 < freq.start < freq.stop:
        raise InvalidFrequencyError(f"Need 0 < start < stop, got {freq.start} to {freq.stop}")
    if freq.npoints < 2:
        raise InvalidFrequencyError(f"Need at least 2 points, got {freq.npoints}")


def validate_stim(stim: StimConfig) -> None:
    if not (math.isfinite(stim.amplitude) and math.isfinite(stim.offset)):
        raise InvalidStimulusError(f"Stimulus must be finite, got {stim.amplitude} + {stim.offset} V")
    if not stim.amplitude > 0.0:
        raise InvalidStimulusError(f"Stimulus amplitude must be > 0, got {stim.amplitude}")


def validate_trig(trig: TrigConfig) -> None:
    if not math.isfinite(trig.level):
        raise InvalidTriggerError(f"Trigger level must be finite, got {trig.level}")


def validate_channels(input: ChannelConfig, output: ChannelConfig) -> None:
    if input.ch == output.ch:
        raise InvalidChannelError(f"Input and output must be different channels, both are {input.ch.token}")


class FreqResp:
    """
    Frequency response measurement session.

    States: uninitialized -> ready (after ``initialize``) -> completed (after
    the last ``step``). ``close`` returns to uninitialized from anywhere.
    """

    def __init__(
        self,
        rm: Optional[pyvisa.ResourceManager] = None,
        visa_backend: Optional[str] = None,
        scope_transport: Optional[SocketTransport] = None,
        gen_transport: Optional[SocketTransport] = None,
        debug_level: int = 0,
        quiet: bool = False,
    ):
        """
        Parameters
        ----------
        rm : pyvisa.ResourceManager, optional
            Resource manager to open instruments with. When omitted, one is
            created on first use and closed again by ``close()``.
        visa_backend : str, optional
            pyvisa backend for a session-owned resource manager, e.g. "@py"
        scope_transport, gen_transport : SocketTransport, optional
            Pre-built transports; by default socket transports are created.
        debug_level : int
            0 = silent, 1 = print SCPI traffic to stderr
        quiet : bool
            Suppress informational messages
        """
        self._rm = rm
        self._owns_rm = rm is None
        self.visa_backend = visa_backend
        self._scope_transport = scope_transport
        self._gen_transport = gen_transport
        self.debug_level = debug_level
        self.quiet = quiet

        self.oscope: Optional[Oscilloscope] = None
        self.stimulus: Optional[SineGenerator] = None
        self.setup: Optional[MeasurementSetup] = None

        self.initialized = False
        self.completed = False
        self.f = math.nan
        self._results: List[MeasurementSample] = []

        self._input: Optional[ChannelRanger] = None
        self._output: Optional[ChannelRanger] = None
        self._amplitude_factor = 1.0
        self._time_param = DelayParam.PHA

    def __enter__(self) -> 'FreqResp':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __iter__(self) -> Iterator[MeasurementSample]:
        """Yield samples step by step until the sweep is complete."""
        while self.initialized and not self.completed:
            _, sample = self.step()
            yield sample

    @property
    def results(self) -> Tuple[MeasurementSample, ...]:
        """Samples measured so far, in sweep order."""
        return tuple(self._results)

    def _resource_manager(self) -> pyvisa.ResourceManager:
        if self._rm is None:
            if self.visa_backend is None:
                self._rm = pyvisa.ResourceManager()
            else:
                self._rm = pyvisa.ResourceManager(self.visa_backend)
        return self._rm

    def _transport(self, preset: Optional[SocketTransport]) -> SocketTransport:
        if preset is not None:
            return preset
        return SocketTransport(self._resource_manager(), debug_level=self.debug_level)

    def _release_instruments(self) -> None:
        # Either instrument may never have been attached
        try:
            if self.oscope is not None:
                self.oscope.detach()
        finally:
            if self.stimulus is not None:
                self.stimulus.detach()

    def initialize(self, oscope: str, siggen: str, setup: MeasurementSetup) -> None:
        """
        Validate the setup, connect both instruments and configure them.

        Parameters
        ----------
        oscope : str
            Oscilloscope address, e.g. '192.168.0.197:5025'
        siggen : str
            Sine generator address, e.g. '192.168.0.198:5555'
        setup : MeasurementSetup
            Sweep, stimulus, channel, trigger, measurement and dwell settings

        Raises
        ------
        AlreadyInitializedError
            The session is already initialized; call close() first.
        ConfigError
            One of the configuration groups is invalid. Nothing was sent.
        SineGenConnectError, OscilloscopeConnectError
            The instrument could not be reached.
        """
        if self.initialized:
            raise AlreadyInitializedError("Session already initialized; close() it first")

        validate_freq(setup.freq)
        validate_stim(setup.stim)
        validate_trig(setup.trig)
        validate_channels(setup.input, setup.output)

        self.setup = setup = copy.deepcopy(setup)
        self._results.clear()
        self._release_instruments()

        # Stimulus: start frequency, zero phase, output on
        stim = setup.stim
        self.stimulus = SineGenerator(self._transport(self._gen_transport))
        if not self.stimulus.attach(siggen):
            raise SineGenConnectError(f"Unable to connect to function generator at {siggen}")
        self.stimulus.set_channel(stim.ch, freq=setup.freq.start, vpp=stim.vpp, voffs=stim.offset, phase=0.0)
        self.stimulus.set_channel_output(stim.ch, True)

        self.oscope = Oscilloscope(self._transport(self._scope_transport))
        if not self.oscope.attach(oscope):
            raise OscilloscopeConnectError(f"Unable to connect to oscilloscope at {oscope}")

        for chan in (setup.input, setup.output):
            self.oscope.set_channel_enable(chan.ch, True)
            self.oscope.set_channel_atten(chan.ch, 10.0 if chan.atten == 10.0 else 1.0)
            self.oscope.set_channel_bwl(chan.ch, chan.bwl)
            self.oscope.set_channel_volts_exact(chan.ch, 1.0, 0.0)
            self.oscope.set_channel_coupling(chan.ch, chan.coupling)

        trig = setup.trig
        self.oscope.set_trigger_mode(TriggerMode.AUTO)
        self.oscope.set_edge_trigger(trig.ch, trig.edge, trig.level, trig.coupling)

        # Amplitude is read as AMPL either way and scaled for Vpk
        self._amplitude_factor = 0.5 if setup.meas.vtype == VoltageKind.VPK else 1.0
        if setup.meas.ttype == TimeKind.DELAY:
            self._time_param = DelayParam.FRR if trig.edge == EdgeType.RISING else DelayParam.FFF
        else:
            self._time_param = DelayParam.PHA

        self._input = ChannelRanger(self.oscope, setup.input.ch, MeasParam.AMPL)
        self._output = ChannelRanger(self.oscope, setup.output.ch, MeasParam.AMPL)

        self.initialized = True
        self.completed = False

        self._output.refresh()
        self._input.refresh()

        # The first reading after configuration is off; take one and drop it
        self.f = setup.freq.start
        self._measure_freq(self.f)

        if not self.quiet:
            print(f"FreqResp initialized: {setup.input.ch.token} (input), {setup.output.ch.token} (output), "
                  f"stimulus on output {stim.ch.token}")

    def close(self) -> None:
        """Release both instruments and forget all results. Safe to call repeatedly."""
        try:
            self._release_instruments()
        finally:
            self.oscope = None
            self.stimulus = None
            self._input = None
            self._output = None
            self._results.clear()
            self.initialized = False
            self.completed = False
            self.f = math.nan
            if self._owns_rm and self._rm is not None:
                self._rm.close()
                self._rm = None

    def sweep(self, on_measurement: Optional[Callable[[MeasurementSample], None]] = None) -> Status:
        """
        Measure the whole sweep from the start frequency.

        New samples are appended to ``results``; earlier ones are kept until
        ``close()``.

        Parameters
        ----------
        on_measurement : callable, optional
            Called with each MeasurementSample as soon as it is measured

        Returns
        -------
        Status.COMPLETE once the last point has been measured.
        """
        if not self.initialized:
            raise NotInitializedError("Call initialize() before sweep()")

        self.completed = False
        self.f = self.setup.freq.start

        status = Status.SUCCESS
        while not self.completed:
            status, sample = self.step()
            if on_measurement:
                on_measurement(sample)
        return status

    def step(self) -> Tuple[Status, MeasurementSample]:
        """
        Measure at the current frequency and advance.

        Returns
        -------
        (status, sample) where status is Status.COMPLETE for the last point of
        the sweep and Status.SUCCESS otherwise.
        """
        if not self.initialized:
            raise NotInitializedError("Call initialize() before step()")
        if self.completed:
            raise SweepCompletedError("Sweep already complete")

        freq = self.setup.freq
        sample = self._measure_freq(self.f)
        self._results.append(sample)

        f_next = next_frequency(self.f, freq)
        if f_next is None or f_next > FREQ_FUDGE * freq.stop:
            self.completed = True
            return Status.COMPLETE, sample

        self.f = f_next
        return Status.SUCCESS, sample

    def _settle(self, tcapture: float) -> None:
        dwell = self.setup.dwell
        delay_ms = dwell.min_dwell_ms
        if not math.isnan(tcapture):
            delay_ms = max(dwell.stable_screens * tcapture * 1000.0, dwell.min_dwell_ms)
        time.sleep(delay_ms / 1000.0)

    def _measure_freq(self, f: float) -> MeasurementSample:
        """Settle at ``f``, auto-range both channels and take one reading."""
        self.stimulus.set_channel_freq(self.setup.stim.ch, f)
        self._settle(self.oscope.set_timebase(MEAS_CYCLES / f))

        mag_in = mag_out = math.nan
        adjust_in = adjust_out = 0
        hunts = 0
        for _ in range(MAX_RANGE_ROUNDS):
            last_in, last_out = adjust_in, adjust_out

            mag_in = self._amplitude_factor * self._input.measure()
            adjust_in = self._input.adjust
            mag_out = self._amplitude_factor * self._output.measure()
            adjust_out = self._output.adjust

            if last_in * adjust_in < 0 or last_out * adjust_out < 0:
                hunts += 1

            if (adjust_in == 0 and adjust_out == 0) or hunts >= HUNT_LIMIT:
                break

        t = self.oscope.measure_delay(self._input.ch, self._output.ch, self._time_param)

        return MeasurementSample(
            freq=f,
            mag_in=mag_in,
            mag_out=mag_out,
            gain_db=gain_db(mag_in, mag_out),
            time=t,
            tunit=self.setup.meas.ttype,
        )
