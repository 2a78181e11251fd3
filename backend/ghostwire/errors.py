class GhostwireError(Exception):
    """Base class for errors raised by the document store and hub."""


class CorruptStoreError(GhostwireError):
    """The persisted document could not be parsed or has the wrong shape."""


class PersistenceFailure(GhostwireError):
    """Reading or writing the document file failed, or the store lock could not be acquired in time."""


class InvalidIdentity(GhostwireError):
    """An identify request carried a missing, non-numeric or negative identity."""
