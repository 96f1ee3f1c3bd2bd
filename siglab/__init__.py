"""
SCPI instrument control over TCP sockets.

This package provides controllers for a Siglent-style oscilloscope and a
Rigol-style sine generator, both driven through a small pyvisa socket
transport.

Submodules:
    siglab.transport - Socket transport and address parsing
    siglab.scope - Oscilloscope controller, scale and timebase tables
    siglab.sinegen - Sine generator controller
"""

__version__ = "2.2.0"
