"""Carebook - clinician availability, slot inventory and booking core."""

__version__ = "0.1.0"
