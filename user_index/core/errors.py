class UserIndexError(Exception):
    """Base class for errors raised by the user index service."""


class SyncLockUnavailableError(UserIndexError):
    """The lock store could not be reached while scheduling a full sync."""


class SyncQueueUnavailableError(UserIndexError):
    """The job broker rejected an enqueue."""


class InvalidSyncJobError(UserIndexError):
    """A sync job carried an unusable payload or an unknown kind."""


class IndexWriteError(UserIndexError):
    """The cache tier rejected a reconciliation batch."""


class UserAlreadyExistsError(UserIndexError):
    pass


class UserNotFoundError(UserIndexError):
    pass


class NoFieldsToUpdateError(UserIndexError):
    pass


class IndexReadError(UserIndexError):
    """The cache tier could not be read while reconciling."""
