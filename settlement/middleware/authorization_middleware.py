# D:\Settlement\settlement\middleware\authorization_middleware.py
"""
authorization_middleware.py

Este módulo define decoradores para verificar autorização com base no papel (role) do usuário
armazenado no token JWT. Ele extrai o token do cabeçalho Authorization, decodifica-o e checa
se o usuário possui um dos papéis exigidos para acessar a rota.

Funções:
    validate_token(token: str) -> dict:
        Função auxiliar que valida um token JWT e retorna seu payload.

    require_role(allowed_roles) -> Callable:
        Decorador que valida o papel do usuário antes de executar a rota. Token ausente,
        inválido ou expirado resulta em 401; papel insuficiente resulta em 403.

    require_cron_secret(handler) -> Callable:
        Decorador das rotas de cron, que exigem o cabeçalho X-Cron-Secret.

Exemplo de Uso:
    @routes.get("/financial/admin/settings")
    @require_role([Role.SYSTEM_ADMIN])
    async def get_settings(request: web.Request) -> web.Response:
        ...
"""

import hmac
import json
from typing import Callable, Iterable

from aiohttp import web

from settlement.config.settings import CRON_SECRET
from settlement.models.database import Role
from settlement.services.auth_service import AuthService


def _json_error(exception_class, message: str):
    return exception_class(
        text=json.dumps({"error": message}),
        content_type="application/json"
    )


def validate_token(token: str) -> dict:
    """
    Valida um token JWT e retorna seu payload.

    Args:
        token (str): Cabeçalho Authorization completo, com prefixo "Bearer"

    Returns:
        dict: Payload do token

    Raises:
        ValueError: Se o token for inválido ou expirado
    """
    if not token.startswith("Bearer "):
        raise ValueError("Token inválido.")
    return AuthService.verify_jwt_token(token.split(" ", 1)[1].strip())


def require_role(allowed_roles: Iterable) -> Callable:
    """
    Decorador que verifica se o usuário possui um dos papéis especificados.

    O papel legado 'ADMIN' é tratado como SYSTEM_ADMIN; papéis desconhecidos são negados.

    Args:
        allowed_roles (Iterable): Papéis que podem acessar a rota (Role ou str).

    Returns:
        Callable: Função decoradora que envolve o handler original.

    Raises:
        web.HTTPUnauthorized: Cabeçalho ausente, token inválido ou expirado.
        web.HTTPForbidden: Se o papel do usuário não estiver em allowed_roles.
    """
    allowed = [Role.parse(role) for role in allowed_roles]

    def decorator(handler: Callable) -> Callable:
        async def wrapper(request: web.Request) -> web.Response:
            auth_header = request.headers.get("Authorization", "")
            if not auth_header.startswith("Bearer "):
                raise _json_error(web.HTTPUnauthorized, "Missing or invalid Authorization header")

            try:
                payload = validate_token(auth_header)
            except ValueError as e:
                raise _json_error(web.HTTPUnauthorized, str(e))

            role = AuthService.normalize_role(payload.get("role"))
            if role is None or role not in allowed:
                raise _json_error(web.HTTPForbidden, "Acesso negado: privilégio insuficiente.")

            user_id = payload.get("sub")
            request["user"] = {
                "id": int(user_id) if user_id is not None else None,
                "role": role.value,
                "account_id": payload.get("account_id"),
                "name": payload.get("name"),
            }

            return await handler(request)
        return wrapper
    return decorator


def require_cron_secret(handler: Callable) -> Callable:
    """
    Decorador que exige o segredo de cron no cabeçalho X-Cron-Secret.

    Raises:
        web.HTTPUnauthorized: Se o segredo estiver ausente ou incorreto.
    """
    async def wrapper(request: web.Request) -> web.Response:
        secret = request.headers.get("X-Cron-Secret", "")
        if not secret or not hmac.compare_digest(secret, CRON_SECRET):
            raise _json_error(web.HTTPUnauthorized, "Segredo de cron inválido")
        return await handler(request)
    return wrapper
