"""Bastion: request-time threat detection and ban enforcement for aiohttp."""

__version__ = "0.1.0"
