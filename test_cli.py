"""
Tests for value parsing, report output and the command-line entry point.
"""

import csv
import io

import pytest

from conftest import Bench
from fresp import __main__ as cli
from fresp.config import SweepKind, TimeKind, VoltageKind
from fresp.report import BlockedFileError, ReportWriter, save_to_csv
from fresp.sweep import FreqResp, MeasurementSample, gain_db
from fresp.util import format_frequency, parse_amplitude, parse_si
from siglab.scope import Channel, Coupling, EdgeType
from siglab.sinegen import Channel as GenChannel

ADDRESSES = ['--scope', '192.168.0.197:5025', '--siggen', '192.168.0.198:5555']


def sample(freq=1e3, mag_in=1.0, mag_out=2.0, time=-45.0, tunit=TimeKind.PHASE):
    return MeasurementSample(freq, mag_in, mag_out, gain_db(mag_in, mag_out), time, tunit)


class TestParseSI:
    """Test SI-prefixed value parsing."""

    @pytest.mark.parametrize('text, unit, expected', [
        ('1KHz', 'Hz', 1e3),
        ('10kHz', 'Hz', 10e3),
        ('1.5M', 'Hz', 1.5e6),
        ('100', 'Hz', 100.0),
        ('250u', 'V', 250e-6),
        ('-10mV', 'V', -0.01),
        ('0V', 'V', 0.0),
        ('2e3', 'Hz', 2e3),
        ('1 kHz', 'Hz', 1e3),
    ])
    def test_valid(self, text, unit, expected):
        assert parse_si(text, unit=unit) == pytest.approx(expected)

    @pytest.mark.parametrize('text', ['', 'abc', '1XHz', '1kV'])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_si(text, unit='Hz')

    def test_amplitude(self):
        assert parse_amplitude('1Vpp') == (1.0, VoltageKind.VPP)
        assert parse_amplitude('500mVpk') == (pytest.approx(0.5), VoltageKind.VPK)
        assert parse_amplitude('2') == (2.0, VoltageKind.VPP)
        assert parse_amplitude('0.5VPK') == (0.5, VoltageKind.VPK)

    def test_format_frequency(self):
        assert format_frequency(100.0) == '100.00 Hz'
        assert format_frequency(1e3) == '1.000 KHz'
        assert format_frequency(2.5e6) == '2.500 MHz'


class TestReportWriter:
    """Test the tab-separated report."""

    def test_console(self):
        out = io.StringIO()
        with ReportWriter(stream=out) as report:
            report.write_header(TimeKind.PHASE)
            report.write_sample(sample())
        lines = out.getvalue().splitlines()
        assert lines[0] == 'freq\tinput\toutput\tgain\tdB\tphase'
        assert lines[1] == '1000\t1\t2\t2\t6.0206\t-45'

    def test_file_and_quiet_console(self, tmp_path):
        out = io.StringIO()
        path = tmp_path / 'run.txt'
        with ReportWriter(str(path), echo=False, stream=out) as report:
            report.write_header(TimeKind.DELAY)
            report.write_sample(sample(time=1.25e-4, tunit=TimeKind.DELAY))
        assert out.getvalue() == ''
        assert path.read_text().splitlines() == [
            'freq\tinput\toutput\tgain\tdB\tdelay',
            '1000\t1\t2\t2\t6.0206\t0.000125',
        ]

    @pytest.mark.parametrize('name', ['fresp.exe', 'FRESP.EXE', 'out.Exe'])
    def test_exe_is_blocked(self, tmp_path, name):
        with pytest.raises(BlockedFileError):
            ReportWriter(str(tmp_path / name))
        assert not (tmp_path / name).exists()

    def test_save_to_csv(self, tmp_path):
        path = tmp_path / 'sweep.csv'
        save_to_csv(str(path), [sample(), sample(freq=2e3)])
        with open(path, newline='') as fh:
            rows = list(csv.reader(fh))
        assert rows[0] == ['Frequency (Hz)', 'Input (V)', 'Output (V)', 'Gain (dB)', 'Phase (deg)']
        assert len(rows) == 3
        assert float(rows[2][0]) == 2e3

    def test_save_to_csv_delay(self, tmp_path):
        path = tmp_path / 'sweep.csv'
        save_to_csv(str(path), [sample(tunit=TimeKind.DELAY)])
        assert path.read_text().splitlines()[0].endswith('Delay (s)')


class TestArguments:
    """Test turning command-line arguments into a measurement setup."""

    def setup_for(self, *argv):
        parser = cli.build_parser()
        return cli.setup_from_args(parser, parser.parse_args(list(argv)))

    def test_defaults(self):
        setup = self.setup_for()
        assert (setup.freq.start, setup.freq.stop) == (1e3, 100e3)
        assert setup.freq.sweep == SweepKind.LOG
        assert setup.freq.npoints == 10
        assert setup.stim.ch == GenChannel.CH1
        assert setup.stim.vpp == 1.0
        assert (setup.input.ch, setup.output.ch) == (Channel.CH1, Channel.CH2)
        assert setup.input.coupling == Coupling.AC
        assert setup.input.atten == 10.0
        assert setup.input.bwl
        assert setup.trig.ch == Channel.CH1
        assert setup.trig.edge == EdgeType.RISING
        assert setup.dwell.min_dwell_ms == 500.0

    def test_full(self):
        setup = self.setup_for('-s', '10', '-e', '1MHz', '--lin', '50', '-v', '200mVpk', '--dc-offset', '1V',
                               '--stim-ch', '2', '-i', '3', '-o', '4', '--output-coupling', 'dc',
                               '--output-probe', '1', '--no-output-bwl', '--trig-ch', 'out',
                               '--trig-edge', 'falling', '--trig-level=-50mV','--vtype', 'vpk',
                               '--ttype', 'delay', '--dwell', 'slow')
        assert setup.freq.sweep == SweepKind.LIN
        assert setup.freq.npoints == 50
        assert setup.freq.stop == 1e6
        assert setup.stim.vtype == VoltageKind.VPK
        assert setup.stim.vpp == pytest.approx(0.4)
        assert setup.stim.offset == 1.0
        assert setup.output.coupling == Coupling.DC
        assert setup.output.atten == 1.0
        assert not setup.output.bwl
        assert setup.trig.ch == Channel.CH4
        assert setup.trig.edge == EdgeType.FALLING
        assert setup.trig.level == pytest.approx(-0.05)
        assert setup.meas.ttype == TimeKind.DELAY
        assert setup.dwell.min_dwell_ms == 1000.0

    @pytest.mark.parametrize('argv', [
        ['-i', '2', '-o', '2'],
        ['-s', '10K', '-e', '1K'],
        ['-s', '0'],
        ['-s', 'fast'],
        ['--log', '1'],
        ['-v', '0Vpp'],
        ['--log', '5', '--lin', '5'],
    ])
    def test_usage_errors(self, argv):
        with pytest.raises(SystemExit) as exc:
            self.setup_for(*argv)
        assert exc.value.code == cli.ExitCode.SYNTAX


class TestMain:
    """Test the entry point end to end against the simulated bench."""

    @pytest.fixture
    def bench(self, monkeypatch, sleeps):
        bench = Bench()

        def session(**kwargs):
            return FreqResp(scope_transport=bench.scope, gen_transport=bench.gen, quiet=True)

        monkeypatch.setattr(cli, 'FreqResp', session)
        return bench

    def test_sweep_to_files(self, bench, tmp_path, capsys):
        dump, table = tmp_path / 'run.txt', tmp_path / 'run.csv'
        code = cli.main(ADDRESSES + ['-s', '1K', '-e', '10K', '-q', '-d', str(dump), '--csv', str(table)])
        assert code == cli.ExitCode.SUCCESS
        lines = dump.read_text().splitlines()
        assert lines[0].startswith('freq\t')
        assert len(lines) == 12
        assert len(table.read_text().splitlines()) == 12
        assert capsys.readouterr().out == ''
        assert not bench.scope.connected

    def test_echo(self, bench, capsys):
        assert cli.main(ADDRESSES + ['-s', '1K', '-e', '10K', '--log', '2']) == 0
        captured = capsys.readouterr()
        assert len(captured.out.splitlines()) == 4
        assert 'Connecting to oscilloscope at 192.168.0.197:5025' in captured.err

    def test_unreachable_generator(self, bench):
        bench.gen.connect_ok = False
        assert cli.main(ADDRESSES + ['-q']) == cli.ExitCode.NO_CONNECT_SINEGEN

    def test_unreachable_scope(self, bench):
        bench.scope.connect_ok = False
        assert cli.main(ADDRESSES + ['-q']) == cli.ExitCode.NO_CONNECT_OSCOPE

    def test_exe_dump_is_blocked(self, bench, tmp_path):
        assert cli.main(ADDRESSES + ['-q', '-d', str(tmp_path / 'fresp.exe')]) == cli.ExitCode.BLOCKED_EXE
        assert bench.gen.writes == []

    def test_dump_not_writable(self, bench, tmp_path):
        code = cli.main(ADDRESSES + ['-q', '-d', str(tmp_path / 'missing' / 'run.txt')])
        assert code == cli.ExitCode.FILE_WRITE

    def test_bad_settings_file(self, bench, tmp_path):
        settings = tmp_path / 'settings.yaml'
        settings.write_text('- not\n- a mapping\n')
        assert cli.main(['-q', '--settings', str(settings)]) == cli.ExitCode.RESOURCE

    def test_addresses_from_settings(self, bench, tmp_path):
        settings = tmp_path / 'settings.yaml'
        settings.write_text('oscope_resource: 10.0.0.5:5025\nstimulus_resource: 10.0.0.6:5555\n')
        assert cli.main(['-q', '-s', '1K', '-e', '2K', '--settings', str(settings)]) == 0
        assert bench.gen.writes[0] == ':SOUR1:APPL:SIN 1000,1,0,0'
