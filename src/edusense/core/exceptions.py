"""Domain exceptions shared by the ingestion and answer pipelines."""


class EduSenseError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class InvalidInputError(EduSenseError):
    """Raised when a request is rejected before any external call."""


class NotFoundError(EduSenseError):
    """Raised when a frame or answer record does not exist for the owner."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(f"{resource} not found", detail=resource_id)
        self.resource = resource
        self.resource_id = resource_id


class CollaboratorError(EduSenseError):
    """Raised when storage, OCR or rasterization fails."""


class GenerationError(EduSenseError):
    """Raised when every configured generation model failed."""
