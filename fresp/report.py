"""
Result output: a tab-separated report echoed to the console and a file.
"""

import csv
import os
import sys
from typing import Iterable, List, Optional, TextIO

from .config import TimeKind
from .sweep import MeasurementSample


class BlockedFileError(ValueError):
    """Refusing to overwrite an executable."""


def _fmt(value: float) -> str:
    return f'{value:.6g}'


class ReportWriter:
    """
    Write one header and one row per sample to stdout and/or a file.

    Example:
        with ReportWriter('run.txt', echo=not quiet) as report:
            report.write_header(TimeKind.PHASE)
            for sample in response:
                report.write_sample(sample)
    """

    def __init__(self, filename: Optional[str] = None, echo: bool = True, stream: Optional[TextIO] = None):
        """
        Args:
            filename: Copy the report into this file (truncated), None for no file
            echo: Also write to ``stream``
            stream: Console stream, sys.stdout by default

        Raises:
            BlockedFileError: ``filename`` has an .exe extension
            OSError: ``filename`` cannot be opened for writing
        """
        if filename and os.path.splitext(filename)[1].lower() == '.exe':
            raise BlockedFileError(f'Blocked writing to .exe file "{filename}"')

        self.filename = filename
        self._file = open(filename, 'w', newline='') if filename else None

        targets: List[TextIO] = []
        if echo:
            targets.append(stream if stream is not None else sys.stdout)
        if self._file is not None:
            targets.append(self._file)
        self._writers = [csv.writer(t, delimiter='\t', lineterminator='\n') for t in targets]

    def __enter__(self) -> 'ReportWriter':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _row(self, row: List[str]) -> None:
        for writer in self._writers:
            writer.writerow(row)

    def write_header(self, tunit: TimeKind) -> None:
        self._row(['freq', 'input', 'output', 'gain', 'dB', tunit.value])

    def write_sample(self, sample: MeasurementSample) -> None:
        self._row([_fmt(sample.freq), _fmt(sample.mag_in), _fmt(sample.mag_out),
                   _fmt(sample.gain), _fmt(sample.gain_db), _fmt(sample.time)])

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def save_to_csv(filename: str, samples: Iterable[MeasurementSample]) -> None:
    """Save sweep results to a CSV file."""
    samples = list(samples)
    tunit = samples[0].tunit if samples else TimeKind.PHASE
    time_col = 'Delay (s)' if tunit == TimeKind.DELAY else 'Phase (deg)'

    with open(filename, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(['Frequency (Hz)', 'Input (V)', 'Output (V)', 'Gain (dB)', time_col])
        for s in samples:
            writer.writerow([s.freq, s.mag_in, s.mag_out, s.gain_db, s.time])
