"""
Classroom World - Error Types
"""


class WorldError(Exception):
    """Base class for world engine errors."""


class WorldValidationError(WorldError, ValueError):
    """Rejected input; nothing was written."""


class DuplicateRecordError(WorldError):
    """A write collided with a uniqueness constraint."""

    def __init__(self, table: str, key: object = None):
        self.table = table
        self.key = key
        super().__init__(f"Duplicate record in {table}: {key!r}")
