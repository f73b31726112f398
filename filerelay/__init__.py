"""Ephemeral session relay: signaling hub plus resumable file relay."""

__version__ = "0.1.0"
