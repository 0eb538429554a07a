"""
Error taxonomy for the concierge core.

Every error carries a stable machine code (used by routers to pick an HTTP
status) and a short Portuguese message that is safe to show to the user.
Raw provider payloads and stack traces never end up in `message`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.concierge.conversation.types import UsageSnapshot


class ConciergeError(Exception):
    """Base class. `code` is stable, `message` is user-facing."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class QuotaExceeded(ConciergeError):
    code = "QUOTA_EXCEEDED"

    def __init__(self, message: str, usage: UsageSnapshot) -> None:
        super().__init__(message)
        self.usage = usage


class UploadLimitExceeded(ConciergeError):
    """Daily ancestry upload cap reached."""

    code = "UPLOAD_LIMIT_EXCEEDED"


class InputValidationError(ConciergeError):
    code = "VALIDATION_ERROR"


class FileTooLarge(InputValidationError):
    code = "FILE_TOO_LARGE"


class ParseError(ConciergeError):
    """Ancestry document could not be turned into a profile."""

    code = "ANCESTRY_PARSE_FAILED"


class EmptyOrTooShort(ParseError):
    code = "ANCESTRY_TEXT_TOO_SHORT"


class NoAncestryExtracted(ParseError):
    code = "ANCESTRY_NOT_FOUND"


# category -> user-facing message
UPSTREAM_MESSAGES: dict[str, str] = {
    "auth": "Erro de configuração da IA. Entre em contato com o suporte.",
    "rate_limit": "Muitas solicitações. Aguarde alguns segundos e tente novamente.",
    "quota": "Limite de uso da IA atingido. Tente novamente mais tarde.",
    "not_found": "Modelo de IA não disponível. Tente novamente mais tarde.",
    "timeout": "Timeout na resposta da IA. Tente novamente.",
    "transient": "Serviço de IA temporariamente indisponível. Tente novamente em alguns minutos.",
    "unknown": "Erro temporário na IA. Tente novamente em alguns minutos.",
}

RETRYABLE_CATEGORIES = frozenset({"timeout", "transient"})


class UpstreamCompletionError(ConciergeError):
    """Completion provider failure, re-categorised."""

    def __init__(self, category: str, detail: str = "") -> None:
        if category not in UPSTREAM_MESSAGES:
            category = "unknown"
        super().__init__(UPSTREAM_MESSAGES[category])
        self.category = category
        # Internal only, for logs. Never rendered to the user.
        self.detail = detail

    @property
    def code(self) -> str:  # type: ignore[override]
        return f"UPSTREAM_{self.category.upper()}"

    @property
    def retryable(self) -> bool:
        return self.category in RETRYABLE_CATEGORIES


class PersistenceError(ConciergeError):
    code = "PERSISTENCE_ERROR"

    def __init__(self, message: str = "Erro ao salvar dados. Tente novamente.") -> None:
        super().__init__(message)
