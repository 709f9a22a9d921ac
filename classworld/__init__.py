"""
Classroom World - per-student, per-classroom gamification cadence engine.
"""

__version__ = "1.0.0"
