"""Custom exceptions for the field-service application."""

class FieldServiceError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class ValidationError(FieldServiceError):
    """Exception raised for invalid input (empty required field, malformed contact)."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class NotFoundError(FieldServiceError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class UnauthorizedError(FieldServiceError):
    """Raised when a caller lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)

class WorkflowError(FieldServiceError):
    """Raised when a builder step transition is not allowed."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)

class PersistenceError(FieldServiceError):
    """Raised when the document store cannot complete a write."""
    def __init__(self, message="Could not save changes", payload=None):
        super().__init__(message, 500, payload)

class ConcurrentEditError(PersistenceError):
    """Raised when a document was changed by someone else since it was loaded."""
    def __init__(self, document_type, document_id, expected_version, current_version=None):
        message = (
            f"This {document_type} was modified by someone else "
            f"(expected version {expected_version}, found {current_version}). "
            f"Reload it before saving again."
        )
        super().__init__(message, payload={
            'error': 'conflict',
            'document_id': document_id,
            'expected_version': expected_version,
            'current_version': current_version,
        })
        self.status_code = 409
        self.document_type = document_type
        self.document_id = document_id

class DeliveryError(FieldServiceError):
    """Raised when an email/SMS provider rejects or fails a delivery."""
    def __init__(self, message, payload=None):
        super().__init__(message, 502, payload)
