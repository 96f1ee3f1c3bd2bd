"""
Test suite for the SineGenerator controller.
"""

import pytest

from conftest import FakeTransport
from siglab.sinegen import Channel, SineGenerator, coerce_phase


@pytest.fixture
def gen():
    transport = FakeTransport()
    transport.connect('192.168.0.198:5555')
    return SineGenerator(transport), transport


class TestCoercePhase:
    """Test phase wrapping into [0, 360)."""

    @pytest.mark.parametrize('phase, expected', [
        (0.0, 0.0),
        (90.0, 90.0),
        (360.0, 0.0),
        (370.0, 10.0),
        (-10.0, 350.0),
        (-720.0, 0.0),
        (1e-15 - 360.0, 0.0),
    ])
    def test_wrap(self, phase, expected):
        assert coerce_phase(phase) == pytest.approx(expected, abs=1e-9)

    def test_range(self):
        for phase in (-1e-17, -359.999, 359.999, 1234.5):
            wrapped = coerce_phase(phase)
            assert 0.0 <= wrapped < 360.0
            turns = (phase - wrapped) / 360.0
            assert turns == pytest.approx(round(turns), abs=1e-9)


class TestSineGenerator:
    """Test the SCPI commands sent to the generator."""

    def test_attach_loads_defaults(self):
        transport = FakeTransport()
        gen = SineGenerator(transport)
        assert gen.attach('192.168.0.198:5555')
        assert gen.attached
        assert transport.writes == [':SOUR1:APPL:SIN 1000,1,0,0', ':SOUR2:APPL:SIN 1000,1,0,90']

    def test_attach_failure(self):
        gen = SineGenerator(FakeTransport(connect_ok=False))
        assert not gen.attach('192.168.0.198:5555')
        assert not gen.attached

    def test_set_channel(self, gen):
        sg, transport = gen
        assert sg.set_channel(Channel.CH2, freq=1000.0, vpp=2.0, voffs=0.5, phase=-90.0)
        assert transport.writes == [
            ':SOUR2:FREQ 1000.0',
            ':SOUR2:VOLT 2.0',
            ':SOUR2:VOLT:OFFS 0.5',
            ':SOUR2:PHAS 270.0',
        ]

    def test_set_channel_skips_unset(self, gen):
        sg, transport = gen
        assert sg.set_channel(Channel.CH1, vpp=1.0)
        assert transport.writes == [':SOUR1:VOLT 1.0']

    def test_set_channel_stops_at_first_failure(self, gen):
        sg, transport = gen
        transport.fail_after = 1
        assert not sg.set_channel(Channel.CH1, freq=1000.0, vpp=1.0, voffs=0.0, phase=0.0)
        assert transport.writes == [':SOUR1:FREQ 1000.0']

    def test_output_and_align(self, gen):
        sg, transport = gen
        assert sg.set_channel_output(Channel.CH1, True)
        assert sg.set_channel_output(Channel.CH2, False)
        assert sg.align_channel(Channel.CH1)
        assert transport.writes == [':OUTP1 ON', ':OUTP2 OFF', ':SOUR1:PHAS:SYNC']

    def test_detached_writes_fail(self, gen):
        sg, _ = gen
        sg.detach()
        assert not sg.set_channel_freq(Channel.CH1, 1000.0)
