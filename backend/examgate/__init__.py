"""ExamGate: exam access control and attempt lifecycle engine."""

__version__ = "1.0.0"
