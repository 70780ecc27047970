"""Headset pose fusion: IMU dead-reckoning blended with absolute position fixes."""

__version__ = "0.1.0"
