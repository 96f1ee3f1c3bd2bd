#!/usr/bin/env python3
"""
Command-line interface for frequency response measurements.
"""

import argparse
import sys
from enum import IntEnum
from typing import List, Optional

import pyvisa

from siglab.scope import Channel as ScopeChannel, Coupling, EdgeType
from siglab.sinegen import Channel as GenChannel

from .config import (
    ChannelConfig,
    FreqConfig,
    MeasConfig,
    MeasurementSetup,
    StimConfig,
    SweepKind,
    TimeKind,
    TrigConfig,
    VoltageKind,
    dwell_profile,
)
from .report import BlockedFileError, ReportWriter, save_to_csv
from .settings import SettingsError, load_settings
from .sweep import ConfigError, FreqResp, OscilloscopeConnectError, SineGenConnectError
from .util import format_frequency, parse_amplitude, parse_si


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    SYNTAX = 2          # argparse usage errors
    NO_CONNECT_SINEGEN = 3
    NO_CONNECT_OSCOPE = 4
    FILE_WRITE = 5
    SETUP = 6
    BLOCKED_EXE = 7
    RESOURCE = 9


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='fresp',
        description='''Frequency response measurement with a Siglent oscilloscope and a Rigol
function generator.

Sweeps a sine stimulus across a frequency range, auto-ranges the input and
output channels at every point and reports amplitude, gain and phase (or
delay) as tab-separated text.''',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  %(prog)s
    Run with all defaults: 1KHz-100KHz, 10 points/decade, 1Vpp on S1, C1 in, C2 out

  %(prog)s -s 10 -e 1M --log 20 -v 200mVpk --vtype vpk
    Wider sweep, finer steps, amplitudes reported as peak values

  %(prog)s -s 100 -e 1100 --lin 11 --ttype delay --trig-edge falling
    Linear sweep, report falling-edge delay instead of phase

  %(prog)s -d run.txt -q --dwell slow
    Save the report to run.txt without echoing it, settle longer at each point

Instrument addresses are read from the settings file (see --settings) unless
given with --scope and --siggen. Use --quiet to suppress console output.
        '''
    )

    # Instruments
    parser.add_argument('--scope', metavar='ADDR',
                        help='Oscilloscope address ip:port (default: from settings file)')
    parser.add_argument('--siggen', metavar='ADDR',
                        help='Function generator address ip:port (default: from settings file)')
    parser.add_argument('--settings', metavar='FILE',
                        help='Settings file with instrument addresses (default: $FRESP_SETTINGS or ~/.config/fresp/settings.yaml)')
    parser.add_argument('--visa-backend', metavar='BACKEND',
                        help='pyvisa backend, e.g. @py for pyvisa-py (default: pyvisa default)')

    # Sweep
    parser.add_argument('-s', '--start', type=str, default='1KHz',
                        help='Start frequency (e.g., 100Hz, 1K, 10KHz) (default: 1KHz)')
    parser.add_argument('-e', '--end', type=str, default='100KHz',
                        help='Stop frequency (e.g., 10KHz, 1MHz) (default: 100KHz)')
    steps_group = parser.add_mutually_exclusive_group()
    steps_group.add_argument('--log', type=int, metavar='N',
                             help='Logarithmic sweep with N points per decade (default: 10)')
    steps_group.add_argument('--lin', type=int, metavar='N',
                             help='Linear sweep with N points in total')

    # Stimulus
    parser.add_argument('--stim-ch', type=int, default=1, choices=[1, 2],
                        help='Function generator output (default: 1)')
    parser.add_argument('-v', '--voltage', type=str, default='1Vpp',
                        help='Stimulus amplitude, suffix pp or pk (e.g., 1Vpp, 500mVpk) (default: 1Vpp)')
    parser.add_argument('--dc-offset', type=str, default='0V',
                        help='Stimulus DC offset (default: 0V)')

    # Scope channels
    parser.add_argument('-i', '--input', type=int, default=1, choices=[1, 2, 3, 4],
                        help='Channel probing the DUT input (default: 1)')
    parser.add_argument('-o', '--output', type=int, default=2, choices=[1, 2, 3, 4],
                        help='Channel probing the DUT output (default: 2)')
    for name in ('input', 'output'):
        parser.add_argument(f'--{name}-coupling', choices=['ac', 'dc'], default='ac',
                            help=f'Coupling of the {name} channel (default: ac)')
        parser.add_argument(f'--{name}-probe', type=int, choices=[1, 10], default=10,
                            help=f'Probe factor of the {name} channel (default: 10)')
        parser.add_argument(f'--{name}-bwl', action=argparse.BooleanOptionalAction, default=True,
                            help=f'20 MHz bandwidth limit on the {name} channel (default: on)')

    # Trigger
    parser.add_argument('--trig-ch', choices=['1', '2', '3', '4', 'in', 'out'], default='in',
                        help='Trigger channel, or the input/output channel (default: in)')
    parser.add_argument('--trig-edge', choices=['rising', 'falling'], default='rising',
                        help='Trigger edge; also selects the edges used for delay (default: rising)')
    parser.add_argument('--trig-coupling', choices=['ac', 'dc'], default='ac',
                        help='Trigger coupling (default: ac)')
    parser.add_argument('--trig-level', type=str, default='0V',
                        help='Trigger level at the probe tip (default: 0V)')

    # Measurement
    parser.add_argument('--vtype', choices=['vpp', 'vpk'], default='vpp',
                        help='Report amplitudes peak-to-peak or peak (default: vpp)')
    parser.add_argument('--ttype', choices=['phase', 'delay'], default='phase',
                        help='Report phase in degrees or delay in seconds (default: phase)')
    parser.add_argument('--dwell', choices=['fast', 'mid', 'slow'], default='mid',
                        help='Settle time after each frequency change (default: mid)')

    # Output
    parser.add_argument('-d', '--dump', type=str, metavar='FILE',
                        help='Also write the tab-separated report to FILE')
    parser.add_argument('--csv', type=str, metavar='FILE',
                        help='Save the finished sweep as CSV')
    parser.add_argument('-q', '--quiet', action='store_true',
                        help='Do not echo the report or any other messages to stdout')
    parser.add_argument('--plot', action='store_true',
                        help='Show a live Bode plot while sweeping')
    parser.add_argument('--debug', action='count', default=0,
                        help='Print SCPI traffic to stderr')

    return parser


def setup_from_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> MeasurementSetup:
    """Turn parsed arguments into a MeasurementSetup, exiting via parser.error on bad input."""
    if args.input == args.output:
        parser.error("Input and output channels must be different")

    try:
        start_hz = parse_si(args.start, unit='Hz')
        stop_hz = parse_si(args.end, unit='Hz')
        amplitude, stim_vtype = parse_amplitude(args.voltage)
        dc_offset = parse_si(args.dc_offset, unit='V')
        trig_level = parse_si(args.trig_level, unit='V')
    except ValueError as e:
        parser.error(str(e))

    if start_hz <= 0:
        parser.error("Start frequency must be greater than zero")
    if start_hz >= stop_hz:
        parser.error("Start frequency must be less than stop frequency")

    if args.lin is not None:
        sweep, npoints = SweepKind.LIN, args.lin
    else:
        sweep, npoints = SweepKind.LOG, args.log if args.log is not None else 10
    if npoints < 2:
        parser.error("At least 2 points are required")

    if amplitude <= 0:
        parser.error("Stimulus amplitude must be greater than zero")

    input_ch = ScopeChannel(args.input)
    output_ch = ScopeChannel(args.output)
    match args.trig_ch:
        case 'in':
            trig_ch = input_ch
        case 'out':
            trig_ch = output_ch
        case _:
            trig_ch = ScopeChannel(int(args.trig_ch))

    def coupling(name: str) -> Coupling:
        return Coupling.DC if name == 'dc' else Coupling.AC

    return MeasurementSetup(
        freq=FreqConfig(start=start_hz, stop=stop_hz, sweep=sweep, npoints=npoints),
        stim=StimConfig(ch=GenChannel(args.stim_ch), vtype=stim_vtype, amplitude=amplitude, offset=dc_offset),
        input=ChannelConfig(input_ch, coupling(args.input_coupling), float(args.input_probe), args.input_bwl),
        output=ChannelConfig(output_ch, coupling(args.output_coupling), float(args.output_probe), args.output_bwl),
        trig=TrigConfig(ch=trig_ch,
                        edge=EdgeType.FALLING if args.trig_edge == 'falling' else EdgeType.RISING,
                        coupling=coupling(args.trig_coupling),
                        level=trig_level),
        meas=MeasConfig(vtype=VoltageKind(args.vtype), ttype=TimeKind(args.ttype)),
        dwell=dwell_profile(args.dwell),
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup = setup_from_args(parser, args)

    # Instrument addresses: command line first, then the settings file
    scope_addr, siggen_addr = args.scope, args.siggen
    if scope_addr is None or siggen_addr is None:
        try:
            settings = load_settings(args.settings)
        except SettingsError as e:
            print(f"Unable to determine instrument resources: {e}", file=sys.stderr)
            return ExitCode.RESOURCE
        scope_addr = scope_addr or settings.oscope_resource
        siggen_addr = siggen_addr or settings.stimulus_resource

    try:
        report = ReportWriter(args.dump, echo=not args.quiet)
    except BlockedFileError as e:
        print(e, file=sys.stderr)
        return ExitCode.BLOCKED_EXE
    except OSError as e:
        print(f'Unable to open file "{args.dump}" for write: {e}', file=sys.stderr)
        return ExitCode.FILE_WRITE

    if not args.quiet:
        kind = 'points/decade' if setup.freq.sweep == SweepKind.LOG else 'points'
        print(f"Sweep: {format_frequency(setup.freq.start)} to {format_frequency(setup.freq.stop)}, "
              f"{setup.freq.npoints} {kind}", file=sys.stderr)
        print(f"Connecting to oscilloscope at {scope_addr}, function generator at {siggen_addr}...",
              file=sys.stderr)

    plot = None
    with report, FreqResp(visa_backend=args.visa_backend, debug_level=args.debug, quiet=True) as response:
        try:
            response.initialize(scope_addr, siggen_addr, setup)
        except SineGenConnectError as e:
            print(e, file=sys.stderr)
            return ExitCode.NO_CONNECT_SINEGEN
        except OscilloscopeConnectError as e:
            print(e, file=sys.stderr)
            return ExitCode.NO_CONNECT_OSCOPE
        except ConfigError as e:
            print(f"Invalid setup: {e}", file=sys.stderr)
            return ExitCode.SETUP
        except (pyvisa.errors.Error, OSError, ValueError) as e:
            print(f"Unable to open VISA resource manager: {e}", file=sys.stderr)
            return ExitCode.ERROR

        if args.plot:
            from .plot import LivePlot
            plot = LivePlot(setup.freq, setup.meas.ttype)

        report.write_header(setup.meas.ttype)
        for sample in response:
            report.write_sample(sample)
            if plot is not None:
                if plot.closed:
                    print("Plot window closed by user - aborting measurement", file=sys.stderr)
                    return ExitCode.ERROR
                plot.update(response.results)

        if args.csv:
            try:
                save_to_csv(args.csv, response.results)
            except OSError as e:
                print(f'Unable to write "{args.csv}": {e}', file=sys.stderr)
                return ExitCode.FILE_WRITE
            if not args.quiet:
                print(f"Data saved to {args.csv}", file=sys.stderr)

    # Show plot after the instruments are released
    if plot is not None:
        import matplotlib.pyplot as plt
        plot.finish()
        plt.show()

    return ExitCode.SUCCESS


if __name__ == '__main__':
    sys.exit(main())
