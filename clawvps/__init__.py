"""Provision an Ubuntu VPS for the OpenClaw agent runtime."""

__version__ = "0.1.0"
