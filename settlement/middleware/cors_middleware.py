"""
cors_middleware.py

Este módulo define o middleware CORS para permitir requisições cross-origin aos
endpoints financeiros (painel web e aplicativo em desenvolvimento).

Functions:
    setup_cors(app, origins) -> None:
        Configura o CORS para a aplicação AIOHTTP.
"""

from typing import Iterable, Optional

import aiohttp_cors

from settlement.config.settings import CORS_ORIGINS


def setup_cors(app, origins: Optional[Iterable[str]] = None):
    """
    Configura o CORS para a aplicação AIOHTTP.

    Args:
        app (web.Application): A aplicação AIOHTTP onde o CORS será configurado.
        origins (Optional[Iterable[str]]): Origens liberadas (padrão: CORS_ORIGINS).

    Returns:
        aiohttp_cors.CorsConfig: Configuração aplicada.
    """
    cors = aiohttp_cors.setup(app, defaults={
        origin: aiohttp_cors.ResourceOptions(
            allow_credentials=True,
            expose_headers="*",
            allow_headers="*",
            allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
        )
        for origin in (origins if origins is not None else CORS_ORIGINS)
    })

    # Aplicar CORS a todas as rotas existentes na aplicação
    for route in list(app.router.routes()):
        cors.add(route)

    return cors
