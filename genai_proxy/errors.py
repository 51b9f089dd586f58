"""Error taxonomy surfaced to proxy clients."""

from typing import Dict, Optional

from starlette.responses import JSONResponse


class ProxyError(Exception):
    """Base class for errors rendered as ``{"error": {...}}`` JSON bodies."""

    status_code: int = 500
    message: str = "Internal Server Error"

    def __init__(self, message: Optional[str] = None, detail: Optional[str] = None):
        if message is not None:
            self.message = message
        self.detail = detail
        super().__init__(detail or self.message)

    def to_payload(self) -> Dict[str, object]:
        return {"error": {"message": self.message, "code": self.status_code}}

    def to_response(self) -> JSONResponse:
        return JSONResponse(content=self.to_payload(), status_code=self.status_code)


class ClientError(ProxyError):
    status_code = 400
    message = "Bad Request"


class MissingAuthorization(ClientError):
    message = "Authorization header is missing"


class MalformedAuthorization(ClientError):
    message = "Invalid Authorization header format"


class UnknownToken(ClientError):
    status_code = 403
    message = "Invalid Token"


class UpstreamBuildError(ProxyError):
    message = "Error creating proxy request"


class UpstreamCallError(ProxyError):
    message = "Error sending proxy request"


class StreamingError(ProxyError):
    message = "Error reading upstream response"
