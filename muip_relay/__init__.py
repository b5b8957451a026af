"""Relay gateway for the game-server dispatch (MUIP) admin API."""

__version__ = "0.1.0"
