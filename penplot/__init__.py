"""
HP-GL pen plotter driver package.

This package provides:
- A read-only catalogue of plotter capabilities (instructions, buffer, papers)
- Plot geometry resolution from paper format and orientation
- HP-GL statement encoding validated against each device
- A buffer-aware serial transport session with swappable flow control
- A session controller that identifies the device and streams commands
"""

__version__ = "0.1.0"
