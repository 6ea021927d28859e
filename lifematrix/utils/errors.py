"""Error handling utilities."""


class LifeMatrixError(Exception):
    """Base exception for the life matrix core."""
    pass


class TaskValidationError(LifeMatrixError):
    """Task input rejected before any mutation (e.g. empty name)."""
    pass


class CredentialRequiredError(LifeMatrixError):
    """The AI credential is missing or was rejected; the user must configure a new one."""
    pass


class CredentialMissingError(CredentialRequiredError):
    """No API key configured in settings."""
    pass


class CredentialRejectedError(CredentialRequiredError):
    """The AI provider rejected the configured API key."""
    pass


class ClassificationError(LifeMatrixError):
    """LLM request or response error."""
    pass


class AIRequestError(ClassificationError):
    """The AI call failed for a reason other than the credential."""
    pass


class AIResponseError(ClassificationError):
    """The AI returned a payload that does not match the expected structure."""
    pass


class PersistenceError(LifeMatrixError):
    """Remote document store operation error."""
    pass


class ImportValidationError(LifeMatrixError):
    """Import payload is malformed; nothing was written."""
    pass
