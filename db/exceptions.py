"""Exceptions raised by the watch history store"""

from typing import Optional


class StoreError(Exception):
    """Base class for store errors"""


class DatabaseNotInitializedError(StoreError):
    """Raised when a Database handle is used before init() or after close()"""


class RecordValidationError(StoreError, ValueError):
    """A candidate record is malformed or missing required fields"""

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.index = index

    def to_dict(self) -> dict:
        return {"index": self.index, "message": self.message}


class DuplicateTagError(StoreError, ValueError):
    """A tag with the same name already exists"""

    def __init__(self, name: str):
        super().__init__(f"Tag already exists: {name!r}")
        self.name = name
