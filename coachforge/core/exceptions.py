class DomainError(Exception):
    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(DomainError):
    def __init__(self, entity: str, message: str | None = None, details: dict | None = None):
        code = f"NF_{entity.upper()}_001"
        msg = message or f"{entity} not found"
        super().__init__(code, msg, details)


class ValidationError(DomainError):
    def __init__(self, field: str, message: str, details: dict | None = None):
        code = f"VAL_{field.upper()}_001"
        msg = f"Validation failed for {field}: {message}"
        super().__init__(code, msg, details or {"field": field})


class BusinessRuleError(DomainError):
    def __init__(self, message: str, code: str = "BR_001", details: dict | None = None):
        super().__init__(code, message, details)


class ConflictError(DomainError):
    def __init__(self, message: str, code: str = "CF_001", details: dict | None = None):
        super().__init__(code, message, details)


class AuthorizationError(DomainError):
    def __init__(self, message: str, code: str = "AUTH_006", details: dict | None = None):
        super().__init__(code, message, details)


class RateLimitError(DomainError):
    def __init__(self, surface: str, limit: str):
        super().__init__(
            "RL_001",
            "Too many requests. Please wait before trying again.",
            {"surface": surface, "limit": limit},
        )


class GenerationError(DomainError):
    """A generation request could not produce any program."""

    def __init__(self, message: str, code: str = "GEN_001", details: dict | None = None):
        super().__init__(code, message, details)


# Completion API errors. These are raised by the LLM layer and never reach the
# HTTP error handler directly; the orchestrator and job runtime translate them.

class CompletionError(Exception):
    """Base class for completion API failures."""


class TransientProviderError(CompletionError):
    """Rate limit, overload or 5xx from the provider. Safe to retry."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class ProviderRequestError(CompletionError):
    """Non-retryable provider rejection (4xx other than 429)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class MalformedOutputError(CompletionError):
    """The model reply held no JSON object matching the expected schema."""

    def __init__(self, message: str, raw_content: str = "", tokens_used: int = 0):
        self.raw_content = raw_content
        self.tokens_used = tokens_used
        super().__init__(message)
