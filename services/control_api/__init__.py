"""HTTP control surface (health, start, stop)."""

from .server import ControlApi, ControlApiServer

__all__ = ["ControlApi", "ControlApiServer"]
