"""Dependency Injection Container.

Manages provider lifecycle and dependency resolution.
"""

from .container import Container

__all__ = ["Container"]
