"""Engine-specific exceptions."""


class EngineError(Exception):
    """Base exception for council_engine.

    ``details`` is optional extra context that the gateway forwards to the
    client alongside the message.
    """

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class CouncilValidationError(EngineError):
    """Malformed command, round or persona payload."""
    pass


class SessionNotFoundError(EngineError):
    """Unknown council session id."""
    pass


class PersonaNotFoundError(EngineError):
    """Unknown persona role."""
    pass


class InvalidStateError(EngineError):
    """Command not allowed in the session's current status."""
    pass


class ProvisioningError(EngineError):
    """Agents could not be provisioned at session start."""
    pass


class GenerationError(EngineError):
    """Utterance generation failed (timeout, upstream error, empty reply)."""
    pass
