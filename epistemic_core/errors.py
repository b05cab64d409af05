"""Error taxonomy shared by every component."""


class EpistemicError(Exception):
    pass


class ValidationError(EpistemicError):
    """Bad input. Surfaced verbatim, never retried."""


class InvalidStateError(EpistemicError):
    """The operation is not allowed in the dialectic's current state."""


class CollaboratorError(EpistemicError):
    """The language or storage collaborator failed or answered with garbage."""


class StaleVersionError(CollaboratorError):
    """A store was attempted on top of a version that is no longer the latest."""


class CircuitOpenError(CollaboratorError):
    """The language collaborator is failing too often and calls are short-circuited."""


class NotFoundError(EpistemicError):
    pass
