"""Shipyard single-host deployment orchestrator."""

__version__ = "1.0.0"
