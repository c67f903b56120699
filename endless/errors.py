"""Exception hierarchy for the Endless story service.

Every failure raised by the core is one of these types so the HTTP layer (or
any other caller) can decide how to surface it. Nothing here is retried.
"""


class EndlessError(Exception):
    """Base class for all Endless errors."""


class InputError(EndlessError):
    """Rejected caller input: empty training text, unparseable seed or id."""


class ModelNotFoundError(EndlessError):
    """No model is stored, or the requested model id does not exist."""


class SerializationError(EndlessError):
    """A stored model blob could not be decoded."""


class GenerationError(EndlessError):
    """Sampling failed on an empty or malformed model."""


class SinkClosedError(EndlessError):
    """The output sink was closed, usually because the client went away."""
