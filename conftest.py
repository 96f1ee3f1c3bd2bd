"""
Shared fixtures: scripted transports standing in for the instruments.

``FakeTransport`` records every command and answers queries from a fixed
table. ``SimScope`` and ``SimGen`` go one step further and keep enough
instrument state (probe factor, volts/div, offset, stimulus frequency) to
answer the queries a sweep makes, so auto-ranging and sweeps run end to end.
"""

import re
from typing import Callable, Dict, List, Optional

import pytest


class FakeTransport:
    """Transport double with a static reply table."""

    def __init__(self, replies: Optional[Dict[str, str]] = None, connect_ok: bool = True):
        self.replies = dict(replies or {})
        self.connect_ok = connect_ok
        self.connected = False
        self.address: Optional[str] = None
        self.writes: List[str] = []
        self.fail_after: Optional[int] = None   # number of writes that succeed

    def connect(self, address: str) -> bool:
        self.connected = self.connect_ok
        self.address = address if self.connect_ok else None
        return self.connected

    def close(self) -> None:
        self.connected = False
        self.address = None

    def write(self, cmd: str) -> bool:
        if not self.connected:
            return False
        if self.fail_after is not None and len(self.writes) >= self.fail_after:
            return False
        self.writes.append(cmd)
        self.handle(cmd)
        return True

    def query(self, cmd: str) -> Optional[bytes]:
        if not self.write(cmd):
            return None
        reply = self.respond(cmd)
        return reply.encode('ascii') if reply is not None else None

    def handle(self, cmd: str) -> None:
        pass

    def respond(self, cmd: str) -> Optional[str]:
        return self.replies.get(cmd)


_VOLTS_TOKEN = re.compile(r'^(\d+)(UV|MV|V)$')
_VOLTS_UNIT = {'UV': 1e-6, 'MV': 1e-3, 'V': 1.0}


def _parse_volts(text: str) -> float:
    match = _VOLTS_TOKEN.match(text)
    if match:
        return int(match.group(1)) * _VOLTS_UNIT[match.group(2)]
    return float(text.rstrip('V'))


class SimGen(FakeTransport):
    """Function generator that remembers the frequency of output 1."""

    def __init__(self, connect_ok: bool = True):
        super().__init__(connect_ok=connect_ok)
        self.freq = 1000.0

    def handle(self, cmd: str) -> None:
        match = re.match(r'^:SOUR1:FREQ (.+)$', cmd)
        if match:
            self.freq = float(match.group(1))

    @property
    def freq_writes(self) -> List[float]:
        return [float(c.split()[-1]) for c in self.writes if c.startswith(':SOUR1:FREQ ')]


class SimScope(FakeTransport):
    """
    Oscilloscope with four channels showing sine waves.

    ``signals`` maps a channel number to a function of the stimulus frequency
    returning the peak-to-peak voltage at the probe tip. Readings are clipped
    to the current full screen, like a real scope.
    """

    def __init__(self, gen: SimGen, signals: Optional[Dict[int, Callable[[float], float]]] = None,
                 phase: Callable[[float], float] = lambda f: -45.0, connect_ok: bool = True):
        super().__init__(connect_ok=connect_ok)
        self.gen = gen
        self.signals = signals or {1: lambda f: 1.0, 2: lambda f: 2.0}
        self.phase = phase
        self.atten = {ch: 10.0 for ch in range(1, 5)}
        self.vdiv = {ch: 1.0 for ch in range(1, 5)}
        self.offset = {ch: 0.0 for ch in range(1, 5)}
        self.broken_measurements = False
        self.answer_attenuation = True

    def handle(self, cmd: str) -> None:
        match = re.match(r'^C([1-4]):(ATTN|VDIV|OFST) (\S+)$', cmd)
        if not match:
            return
        ch, what, value = int(match.group(1)), match.group(2), match.group(3)
        if what == 'ATTN':
            self.atten[ch] = float(value)
        elif what == 'VDIV':
            self.vdiv[ch] = _parse_volts(value)
        else:
            self.offset[ch] = float(value.rstrip('V'))

    def reading(self, ch: int) -> float:
        pkpk = self.signals.get(ch, lambda f: 0.0)(self.gen.freq)
        return min(pkpk, self.vdiv[ch] * 8)

    def respond(self, cmd: str) -> Optional[str]:
        match = re.match(r'^C([1-4]):(ATTN|VDIV|OFST)\?$', cmd)
        if match:
            ch, what = int(match.group(1)), match.group(2)
            if what == 'ATTN':
                return f"C{ch}:ATTN {self.atten[ch]:g}\n" if self.answer_attenuation else None
            if what == 'VDIV':
                return f"C{ch}:VDIV {self.vdiv[ch]:.2E}V\n"
            return f"C{ch}:OFST {self.offset[ch]:.2E}V\n"

        match = re.match(r'^C([1-4]):PAVA\? ([A-Z]+)$', cmd)
        if match:
            ch, name = int(match.group(1)), match.group(2)
            if self.broken_measurements:
                return f"C{ch}:PAVA {name},****\n"
            return f"C{ch}:PAVA {name},{self.reading(ch):.6E}V\n"

        match = re.match(r'^C([1-4])-C([1-4]):MEAD\? ([A-Z]+)$', cmd)
        if match:
            a, b, name = match.groups()
            if self.broken_measurements:
                return f"C{a}-C{b}:MEAD {name},****\n"
            if name == 'PHA':
                return f"C{a}-C{b}:MEAD {name},{self.phase(self.gen.freq):.4E}\n"
            delay = -self.phase(self.gen.freq) / 360.0 / self.gen.freq
            return f"C{a}-C{b}:MEAD {name},{delay:.4E}S\n"

        return None

    def vdiv_writes(self, ch: int) -> List[str]:
        prefix = f"C{ch}:VDIV "
        return [c[len(prefix):] for c in self.writes if c.startswith(prefix)]


class Bench:
    def __init__(self):
        self.gen = SimGen()
        self.scope = SimScope(self.gen)


@pytest.fixture
def bench():
    """A simulated generator and scope: 1 Vpp into the DUT, 2 Vpp out, -45 degrees."""
    return Bench()


@pytest.fixture
def sleeps(monkeypatch):
    """Replace time.sleep and collect the requested delays."""
    import time
    delays: List[float] = []
    monkeypatch.setattr(time, 'sleep', delays.append)
    return delays
