"""
Live Bode plot of a running sweep.
"""

from typing import Sequence

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.ticker import FuncFormatter

from .config import FreqConfig, SweepKind, TimeKind
from .sweep import MeasurementSample


def _format_frequency_tick(value, pos):
    """Format frequency tick labels in Hz/KHz/MHz."""
    if value >= 1e6:
        return f'{value/1e6:.0f} MHz' if value >= 10e6 else f'{value/1e6:.1f} MHz'
    elif value >= 1e3:
        return f'{value/1e3:.0f} KHz' if value >= 10e3 else f'{value/1e3:.1f} KHz'
    else:
        return f'{value:.0f} Hz'


class LivePlot:
    """
    Gain and phase (or delay) plot that is redrawn after every sample.

    Example:
        plot = LivePlot(setup.freq, setup.meas.ttype)
        for sample in response:
            if plot.closed:
                break
            plot.update(response.results)
        plot.finish()
        plt.show()
    """

    def __init__(self, freq: FreqConfig, tunit: TimeKind):
        plt.ion()
        self.fig, (self.ax_mag, self.ax_time) = plt.subplots(2, 1, sharex=True, figsize=(8, 6))

        log_x = freq.sweep == SweepKind.LOG
        plot_fn_mag = self.ax_mag.semilogx if log_x else self.ax_mag.plot
        plot_fn_time = self.ax_time.semilogx if log_x else self.ax_time.plot
        self.line_gain, = plot_fn_mag([], [], marker='o', label="Measured")
        self.line_time, = plot_fn_time([], [], marker='o', label="Measured")

        # Fix the X range to the whole sweep up front
        if log_x:
            margin = (np.log10(freq.stop) - np.log10(freq.start)) * 0.05
            self.ax_mag.set_xlim(10**(np.log10(freq.start) - margin), 10**(np.log10(freq.stop) + margin))
        else:
            margin = (freq.stop - freq.start) * 0.05
            self.ax_mag.set_xlim(freq.start - margin, freq.stop + margin)

        self.ax_mag.set_ylabel("Gain [dB]")
        self.ax_mag.grid(True, which="both", ls=":")

        if tunit == TimeKind.DELAY:
            self.ax_time.set_ylabel("Delay [s]")
        else:
            self.ax_time.set_ylabel("Phase shift [deg]")
        self.ax_time.set_xlabel("Frequency")
        self.ax_time.grid(True, which="both", ls=":")
        self.ax_time.xaxis.set_major_formatter(FuncFormatter(_format_frequency_tick))

        self.fig.tight_layout()

    @property
    def closed(self) -> bool:
        """True once the user has closed the plot window."""
        return not plt.fignum_exists(self.fig.number)

    def update(self, samples: Sequence[MeasurementSample]) -> None:
        freqs = np.array([s.freq for s in samples])
        self.line_gain.set_data(freqs, np.array([s.gain_db for s in samples]))
        self.line_time.set_data(freqs, np.array([s.time for s in samples]))

        # Rescale y-limits only (keep x-limits fixed)
        self.ax_mag.relim()
        self.ax_mag.autoscale_view(scalex=False, scaley=True)
        self.ax_time.relim()
        self.ax_time.autoscale_view(scalex=False, scaley=True)

        self.fig.canvas.draw()
        self.fig.canvas.flush_events()
        plt.pause(0.01)

    def finish(self) -> None:
        """Leave interactive mode so that plt.show() blocks."""
        plt.ioff()
        self.fig.tight_layout()
