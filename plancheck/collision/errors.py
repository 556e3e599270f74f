class CollisionCheckError(Exception):
    """Base class for the errors raised by the collision engine."""


class NotFoundError(CollisionCheckError, LookupError):
    """A machine or couch region is not part of the catalog."""


class UnsupportedCouchTypeError(CollisionCheckError, ValueError):
    """The couch type has no collision envelope model."""


class UnsupportedOrientationError(CollisionCheckError, ValueError):
    """The patient orientation has no isocenter correction."""
