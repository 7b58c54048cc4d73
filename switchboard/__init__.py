"""Switchboard — multi-client TCP command server.

An operator console addresses one connected agent or all of them and
sends short text directives (``INFO``, ``ECHO|<text>``, ``EXIT``).
"""

__version__ = "0.1.0"
