from typing import Optional, Any

from ..exceptions import WaitroomError


class ApiClientError(WaitroomError):
    """Base exception for all waiting room API communication errors."""
    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(f"[waitroom-api] {message} (Status: {status_code})")

class TransportError(ApiClientError):
    """Raised when the API is unreachable."""
    pass

class TransportTimeoutError(TransportError):
    """Raised specifically on timeouts. The only retried error."""
    pass

class ProtocolError(ApiClientError):
    """Raised when the API answers with an empty or malformed body."""
    pass

class ApiStatusError(ApiClientError):
    """Raised when the API answers with a non-2xx status."""
    pass
