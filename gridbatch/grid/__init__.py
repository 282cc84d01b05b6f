from .session import GridSession
from .tracker import EditTracker, ModificationStats

__all__ = ["EditTracker", "GridSession", "ModificationStats"]
