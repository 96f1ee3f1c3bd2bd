"""
Frequency response measurement with a sine generator and an oscilloscope.
"""

from .autorange import ChannelRanger, classify_adjustment
from .config import (
    ChannelConfig,
    DwellConfig,
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
from .report import ReportWriter, save_to_csv
from .settings import Settings, load_settings
from .sweep import FreqResp, MeasurementSample, Status, gain_db
from .util import format_frequency, parse_amplitude, parse_si

__version__ = "2.2.0"
__all__ = [
    "ChannelRanger",
    "classify_adjustment",
    "ChannelConfig",
    "DwellConfig",
    "FreqConfig",
    "MeasConfig",
    "MeasurementSetup",
    "StimConfig",
    "SweepKind",
    "TimeKind",
    "TrigConfig",
    "VoltageKind",
    "dwell_profile",
    "ReportWriter",
    "save_to_csv",
    "Settings",
    "load_settings",
    "FreqResp",
    "MeasurementSample",
    "Status",
    "gain_db",
    "format_frequency",
    "parse_amplitude",
    "parse_si",
]
