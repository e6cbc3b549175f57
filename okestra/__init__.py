"""Supervisors, process groups and telemetry for threaded services."""

__version__ = "0.1.0"