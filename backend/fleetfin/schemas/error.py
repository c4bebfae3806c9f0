"""Error envelope returned by every failing endpoint."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    error: str
    error_code: str
    request_id: str
