# D:\Settlement\settlement\services\errors.py
"""
errors.py

Taxonomia de erros do motor de liquidação. Cada erro carrega um código estável
(`code`) e o status HTTP correspondente, permitindo que as views traduzam a falha
em uma resposta JSON acionável sem conhecer o serviço de origem.

Classes:
    FinancialError: Base de todos os erros de domínio.
    InvalidAmount, BelowMinimum, LimitExceeded, InsufficientBalance,
    AccountNotEligible, PaymentDeclined, InvalidEntry: Erros de validação.
    PermissionDenied: Acesso de não-dono ou não-administrador.
    NotFound: Recurso inexistente.
"""


class FinancialError(Exception):
    """Erro de domínio financeiro com código e status HTTP."""

    code = "FINANCIAL_ERROR"
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class InvalidAmount(FinancialError):
    code = "INVALID_AMOUNT"


class BelowMinimum(FinancialError):
    code = "BELOW_MINIMUM"


class LimitExceeded(FinancialError):
    code = "LIMIT_EXCEEDED"


class InsufficientBalance(FinancialError):
    code = "INSUFFICIENT_BALANCE"


class AccountNotEligible(FinancialError):
    code = "ACCOUNT_NOT_ELIGIBLE"


class PaymentDeclined(FinancialError):
    code = "PAYMENT_DECLINED"
    http_status = 402


class InvalidEntry(FinancialError):
    code = "INVALID_ENTRY"
    http_status = 422


class PermissionDenied(FinancialError):
    code = "PERMISSION_DENIED"
    http_status = 403


class NotFound(FinancialError):
    code = "NOT_FOUND"
    http_status = 404
