from .classroom import ClassroomMonitor

__all__ = ["ClassroomMonitor"]
