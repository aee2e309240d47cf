class PipemapError(Exception):
    """Base class for every error raised by pipemap."""
    pass

class GeometryParseError(PipemapError):
    """Raised when a stored geometry payload cannot be decoded."""
    pass

class VertexOperationError(PipemapError):
    """A vertex operation would break the geometry's minimum shape. Nothing was changed."""
    pass

class EditStateError(PipemapError):
    """A geometry mutation arrived while the feature was not in edit mode."""
    pass

class PersistenceError(PipemapError):
    """The feature store rejected or failed a write."""
    pass

class NotFoundError(PersistenceError):
    pass
