# D:\Settlement\main.py

"""
main.py

Este módulo inicializa e executa a aplicação AIOHTTP do motor de liquidação de
fornecedores. Ele configura o logging e o banco de dados, cria o motor de
liquidação, registra as rotas, o CORS e o worker de liberação, e inicia o servidor web.

Classes:
    Nenhuma.

Functions:
    init_app(db_url, start_worker) -> web.Application:
        Inicializa a aplicação, configurando o banco de dados, o motor e as rotas.

    main() -> None:
        Executa a aplicação e inicia o servidor.
"""

import logging
from aiohttp import web
from settlement.models.database import create_database, get_session_maker, get_async_engine
from settlement.views.financial_views import routes as financial_routes
from settlement.views.financial_admin_views import routes as financial_admin_routes
from settlement.views.bi_views import routes as bi_routes
from settlement.config.settings import (
    DATABASE_URL, SESSION_MAKER_KEY, SETTLEMENT_ENGINE_KEY, configure_logging
)
from settlement.middleware.cors_middleware import setup_cors
from settlement.services.settlement_engine import SettlementEngine
from settlement.workers.release_worker import release_worker_ctx

logger = logging.getLogger(__name__)


async def init_app(db_url: str = DATABASE_URL, start_worker: bool = True):
    """
    Inicializa a aplicação, criando as tabelas do banco de dados e configurando rotas.

    Args:
        db_url (str): URL do banco de dados assíncrono.
        start_worker (bool): Inicia o worker de liberação em segundo plano.

    Returns:
        web.Application: Instância configurada da aplicação AIOHTTP.
    """
    configure_logging()

    # Configuração do banco de dados
    engine = get_async_engine(db_url)
    session_maker = get_session_maker(engine)

    # Cria as tabelas do banco de dados
    await create_database(db_url)

    # Configuração da aplicação AIOHTTP
    app = web.Application()
    app[SESSION_MAKER_KEY] = session_maker
    app[SETTLEMENT_ENGINE_KEY] = SettlementEngine(session_maker)

    app.add_routes(financial_routes)
    app.add_routes(financial_admin_routes)
    app.add_routes(bi_routes)

    # Configuração do CORS
    setup_cors(app)

    if start_worker:
        app.cleanup_ctx.append(release_worker_ctx)

    logger.info("Aplicação de liquidação inicializada (%s)", db_url)
    return app


async def main():
    """
    Executa a aplicação.

    Inicializa a aplicação e inicia o servidor web na porta 8000.
    """
    app = await init_app()
    return app

if __name__ == "__main__":
    web.run_app(main(), host="0.0.0.0", port=8000)
