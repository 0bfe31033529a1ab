"""
KeyClick - Key-to-click remapping engine

Binds physical keys to on-screen targets so that pressing a key synthesizes
a mouse click at that target, anywhere on a multi-monitor virtual desktop.
"""

__version__ = "0.1.0"
