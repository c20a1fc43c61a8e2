class TarlzError(Exception):
    """Base class for tarlz-specific errors."""


class ModeViolationError(TarlzError):
    """A read operation on a write container, or the reverse."""


class EntryNotFoundError(TarlzError, FileNotFoundError):
    pass


# Container damage
class CorruptContainerError(TarlzError):
    pass


class StreamExhaustedError(TarlzError):
    """A sequential scan reached the end without finding the entry."""


class UnsupportedEntryShapeError(TarlzError):
    pass
