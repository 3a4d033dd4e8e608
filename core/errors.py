# errors.py
# Exceções de negócio do ERP (cada uma carrega código, status HTTP e detalhes)

from typing import Any, Dict, Optional


class ERPError(Exception):
    """Erro base de regra de negócio. Convertido em resposta JSON pelo servidor web."""

    status_code = 400

    def __init__(self, code: str, message: str, status_code: Optional[int] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            'success': False,
            'message': self.message,
            'error': self.code,
        }
        body.update(self.details)
        return body


class ValidationError(ERPError):
    status_code = 400


class AuthenticationError(ERPError):
    status_code = 401


class PaymentError(ERPError):
    """Falha de gateway (pagamento ou reembolso). Não é bug: é resultado de negócio."""

    status_code = 402


class ForbiddenError(ERPError):
    status_code = 403


class NotFoundError(ERPError):
    status_code = 404


class ConflictError(ERPError):
    status_code = 409
