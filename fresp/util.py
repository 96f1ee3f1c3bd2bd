"""
Parsing and formatting helpers for frequencies and voltages.
"""

import re
from typing import Tuple

from .config import VoltageKind


# SI prefix multipliers (case-sensitive: m is milli, M is mega)
_SI_PREFIX = {
    '': 1,
    'p': 1e-12,
    'n': 1e-9,
    'u': 1e-6,
    'µ': 1e-6,
    'm': 1e-3,
    'k': 1e3,
    'K': 1e3,
    'M': 1e6,
    'G': 1e9,
}

_SI_RE = re.compile(r'^([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)\s*([pnuµmkKMG]?)([a-zA-Z]+)?$')


def format_frequency(value: float) -> str:
    """Format frequency value with appropriate units (Hz/KHz/MHz)."""
    if value >= 1e6:
        return f'{value/1e6:.3f} MHz' if value < 100e6 else f'{value/1e6:.2f} MHz'
    elif value >= 1e3:
        return f'{value/1e3:.3f} KHz' if value < 100e3 else f'{value/1e3:.2f} KHz'
    else:
        return f'{value:.2f} Hz'


def parse_si(value: str, unit: str = 'Hz') -> float:
    """
    Parse a string with SI prefixes into a numeric value.

    Parameters
    ----------
    value : str
        String to parse, e.g. '10KHz', '5V', '-10mV', '1.5M', '250u'
    unit : str, optional
        Expected unit ('Hz', 'V', ...). The unit suffix itself is optional
        and compared case-insensitively.

    Returns
    -------
    float
        Numeric value in base units

    Examples
    --------
    >>> parse_si('10KHz', unit='Hz')
    10000.0
    >>> parse_si('-10mV', unit='V')
    -0.01
    >>> parse_si('1k')
    1000.0
    """
    original_value = value
    match = _SI_RE.match(value.strip())
    if not match:
        raise ValueError(f"Invalid format: {original_value}")

    number = float(match.group(1))
    prefix = match.group(2)
    found_unit = match.group(3)

    if found_unit and found_unit.upper() != unit.upper():
        raise ValueError(f"Expected unit '{unit}' but found '{found_unit}' in: {original_value}")

    return number * _SI_PREFIX[prefix]


def parse_amplitude(value: str) -> Tuple[float, VoltageKind]:
    """
    Parse a stimulus amplitude such as '1Vpp', '500mVpk' or '2'.

    The convention suffix (pp or pk) is case-insensitive and defaults to
    peak-to-peak.
    """
    text = value.strip()
    kind = VoltageKind.VPP
    lowered = text.lower()
    if lowered.endswith('pk'):
        kind = VoltageKind.VPK
        text = text[:-2]
    elif lowered.endswith('pp'):
        text = text[:-2]
    return parse_si(text, unit='V'), kind
