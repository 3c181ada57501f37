"""Ingest API for the Harbor relay.

FastAPI service accepting browser producers over WebSocket and relaying
their audio to the broadcast server through harbor_bridge sessions.
"""

__version__ = "1.0.0"
