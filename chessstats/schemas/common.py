"""Error body shared by every endpoint.

Format: { "error": { "code": str, "message": str, "context": object } }

`context` names what failed: the store for open, query and availability
failures, the source (with upstream status) for fetch and persist failures.
It is left out for unclassified errors.
"""

from pydantic import BaseModel, Field

from chessstats.errors import CoreError


class ErrorContext(BaseModel):
    """Identifiers attached to a classified failure."""

    store: str | None = None
    source: str | None = None
    directive: str | None = None
    status_code: int | None = Field(default=None, alias="statusCode")
    retry_after: float | None = Field(default=None, alias="retryAfter")

    model_config = {"populate_by_name": True}


class ErrorDetail(BaseModel):
    code: str
    message: str
    context: ErrorContext | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail

    @classmethod
    def for_core_error(cls, exc: CoreError) -> "ErrorResponse":
        context = exc.context
        return cls(
            error=ErrorDetail(
                code=exc.code,
                message=str(exc),
                context=ErrorContext(**context) if context else None,
            )
        )

    @classmethod
    def internal(cls, message: str) -> "ErrorResponse":
        return cls(error=ErrorDetail(code="INTERNAL_ERROR", message=message))

    def body(self) -> dict:
        """JSON body: camelCase keys, unset context fields dropped."""
        return self.model_dump(by_alias=True, exclude_none=True)
