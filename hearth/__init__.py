"""
Hearth - LAN home dashboard server.

Holds the shared dashboard state, pushes live updates to display devices
over Server-Sent Events and accepts paired writes from the control app.
"""

__version__ = "0.1.0"
