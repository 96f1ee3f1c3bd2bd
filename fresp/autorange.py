"""
Auto-ranging of oscilloscope vertical scales.

Each call measures the signal on one channel and, when the peak-to-peak
value sits outside a window of the current full scale, moves the volts/div
setting by whole table steps:

    pkpk > (SEEK_MAX - SEEK_MARGIN) * full scale  -> +1 (zoom out)
    pkpk < (SEEK_MIN - SEEK_MARGIN) * full scale  -> -2 (zoom in fast)
    pkpk < (SEEK_MID - SEEK_MARGIN) * full scale  -> -1 (zoom in)
    otherwise                                     ->  0 (converged)

With 1-2-5 scale steps the band between SEEK_MID and SEEK_MAX is wider than
one step, so a steady signal always has a resting place.
"""

from siglab.scope import Channel, ChannelScale, MeasParam, Oscilloscope


SEEK_MAX = 1.000
SEEK_MID = 0.390
SEEK_MIN = 0.200
SEEK_MARGIN = 0.0275


def classify_adjustment(pkpk: float, full_scale: float) -> int:
    """
    Scale steps requested for a reading of ``pkpk`` on a ``full_scale`` screen.

    Returns one of +1, -2, -1 or 0. NaN readings request no change.
    """
    if pkpk > (SEEK_MAX - SEEK_MARGIN) * full_scale:
        return 1
    if pkpk < (SEEK_MIN - SEEK_MARGIN) * full_scale:
        return -2
    if pkpk < (SEEK_MID - SEEK_MARGIN) * full_scale:
        return -1
    return 0


class ChannelRanger:
    """
    Auto-ranging state of one scope channel.

    ``scale`` is the last scale read back from the scope and ``adjust`` the
    number of steps applied by the most recent ``measure()`` call.
    """

    def __init__(self, scope: Oscilloscope, ch: Channel, param: MeasParam = MeasParam.AMPL):
        self.scope = scope
        self.ch = ch
        self.param = param
        self.scale = ChannelScale()
        self.adjust = 0

    def refresh(self) -> ChannelScale:
        """Re-read the live scale without changing anything."""
        self.scale = self.scope.read_scale(self.ch)
        return self.scale

    def measure(self) -> float:
        """
        Take one reading and adjust the scale if needed.

        Returns:
            The raw reading of ``param``, NaN if the scope had no valid value.
        """
        value = self.scope.measure(self.ch, self.param)
        if self.param == MeasParam.PKPK:
            pkpk = value
        else:
            pkpk = self.scope.measure(self.ch, MeasParam.PKPK)

        self.adjust = 0
        requested = classify_adjustment(pkpk, self.scale.pp)
        if requested != 0:
            self.adjust = self.scope.apply_adjustment(self.ch, self.scale, requested)
            self.refresh()

        return value
