# D:\Settlement\settlement\views\view_utils.py
"""
view_utils.py

Funções auxiliares compartilhadas pelos endpoints financeiros.

Funcionalidades principais:
    - handle_errors: converte exceções de domínio em respostas JSON
    - json_ready: converte Decimal, datetime e Enum em tipos serializáveis
    - parse_date / parse_int / parse_json: leitura validada de parâmetros
    - resolve_supplier_id: determina o fornecedor da requisição e checa o acesso

Regras de Negócio:
    - Erros financeiros viram {"error": <mensagem>, "code": <tipo>} com o status do erro
    - Erros inesperados viram 500 e são registrados com stack trace
"""

import datetime
import enum
import logging
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Dict, Optional

from aiohttp import web

from settlement.config.settings import SETTLEMENT_ENGINE_KEY
from settlement.models.database import Role
from settlement.services.auth_service import AuthService
from settlement.services.errors import FinancialError, InvalidEntry

logger = logging.getLogger(__name__)


def json_ready(value: Any) -> Any:
    """Converte recursivamente valores do domínio em tipos aceitos pelo JSON."""
    if isinstance(value, dict):
        return {key: json_ready(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_ready(item) for item in value]
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def json_ok(data: Any, status: int = 200) -> web.Response:
    return web.json_response(json_ready(data), status=status)


def handle_errors(handler: Callable) -> Callable:
    """
    Decorador que traduz exceções em respostas JSON.

    - FinancialError: status e código do próprio erro
    - ValueError: 400
    - Demais exceções: 500 (registradas com logger.exception)
    """
    @wraps(handler)
    async def wrapper(request: web.Request) -> web.Response:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except FinancialError as e:
            return web.json_response(e.to_dict(), status=e.http_status)
        except ValueError as e:
            return web.json_response({"error": str(e)}, status=400)
        except Exception as e:
            logger.exception("Erro inesperado em %s %s", request.method, request.path)
            return web.json_response({"error": f"Erro interno: {str(e)}"}, status=500)
    return wrapper


def get_engine(request: web.Request):
    return request.app[SETTLEMENT_ENGINE_KEY]


async def parse_json(request: web.Request) -> Dict:
    """
    Lê o corpo JSON da requisição.

    Raises:
        InvalidEntry: Se o corpo não for um objeto JSON válido
    """
    try:
        data = await request.json()
    except ValueError:
        raise InvalidEntry("Corpo da requisição deve ser JSON válido")
    if not isinstance(data, dict):
        raise InvalidEntry("Corpo da requisição deve ser um objeto JSON")
    return data


def parse_date(value: Optional[str], field: str) -> Optional[datetime.datetime]:
    """Converte uma data ISO; InvalidEntry se o formato for inválido."""
    if not value:
        return None
    try:
        return datetime.datetime.fromisoformat(value)
    except ValueError:
        raise InvalidEntry(f"Data inválida para {field}: {value}")


def parse_int(value, field: str, default: Optional[int] = None, minimum: Optional[int] = None) -> Optional[int]:
    """Converte um inteiro; InvalidEntry se o valor for inválido."""
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidEntry(f"Valor inválido para {field}: {value}")
    if minimum is not None and number < minimum:
        raise InvalidEntry(f"{field} deve ser maior ou igual a {minimum}")
    return number


async def resolve_supplier_id(request: web.Request, supplier_id=None) -> int:
    """
    Determina o fornecedor alvo da requisição e verifica o acesso do usuário.

    Sem supplier_id explícito, um usuário SUPPLIER opera o próprio fornecedor.

    Args:
        request (web.Request): Requisição autenticada
        supplier_id: ID informado na rota, query ou corpo (opcional)

    Returns:
        int: ID do fornecedor

    Raises:
        InvalidEntry: Se o ID não puder ser determinado
        PermissionDenied: Se o usuário não tiver acesso ao fornecedor
    """
    user = request["user"]
    supplier_id = parse_int(supplier_id, "supplierId")
    engine = get_engine(request)

    async with engine.session_maker() as session:
        auth = AuthService(session)
        if supplier_id is None:
            if user["role"] != Role.SUPPLIER.value:
                raise InvalidEntry("supplierId é obrigatório")
            supplier = await auth.get_supplier_for_user(user["id"])
            return supplier.id
        supplier = await auth.ensure_supplier_access(user, supplier_id)
        return supplier.id
