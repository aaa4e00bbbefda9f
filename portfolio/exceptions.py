class BlogError(Exception):
    """Base class for every error the blog surfaces to its callers."""


class ReadError(BlogError):
    """Fetching posts from the collection failed."""


class WriteError(BlogError):
    """The collection rejected a create, update or delete."""


class ValidationError(BlogError):
    """Local validation failed; nothing was sent to the collection."""


class PermissionDeniedError(BlogError):
    pass


class NotFoundError(BlogError):
    pass


class SubmitInProgressError(BlogError):
    pass


class StateError(BlogError):
    """The requested transition is not valid from the current editor state."""
