"""RideAI HTTP Server.

FastAPI-based HTTP interface for the orchestration layer.
"""

from .app import create_app, run_server

__all__ = ["create_app", "run_server"]
