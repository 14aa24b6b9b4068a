# D:\Settlement\settlement\config\settings.py

"""
settings.py

Este módulo contém as configurações principais do motor de liquidação de fornecedores,
incluindo variáveis de ambiente, configurações do banco de dados, chave JWT, parâmetros
do agendador de liberação de saldo e fuso horário.

Configurações:
    JWT_SECRET_KEY: Chave secreta para assinar tokens JWT.
    DATABASE_URL: URL de conexão com o banco de dados assíncrono.
    JWT_EXPIRATION_MINUTES: Tempo de expiração dos tokens JWT, em minutos.
    CRON_SECRET: Segredo compartilhado exigido pelas rotas de cron.
    RELEASE_SWEEP_INTERVAL_SECONDS: Intervalo entre execuções do worker de liberação.
    RELEASE_SWEEP_BATCH_SIZE: Quantidade máxima de fornecedores por lote de liberação.
    RELEASE_SWEEP_TIME_BUDGET_SECONDS: Tempo máximo de um lote de liberação.
    RECONCILIATION_EPSILON: Tolerância de arredondamento da conciliação.
    LOG_LEVEL: Nível de log da aplicação.
    FINANCIAL_AUDIT_LOG: Arquivo opcional para espelhar a auditoria financeira.
    CORS_ORIGINS: Origens liberadas para CORS.
    SESSION_MAKER_KEY / SETTLEMENT_ENGINE_KEY: Chaves da aplicação AIOHTTP.
    TIMEZONE: Função que retorna o horário atual no fuso padrão da aplicação.
"""

from dotenv import load_dotenv
import os
import logging
from decimal import Decimal
from aiohttp import web
from sqlalchemy.ext.asyncio import async_sessionmaker
from datetime import datetime
from zoneinfo import ZoneInfo

# Carrega as variáveis do arquivo .env
load_dotenv()

# Pegamos a chave JWT de variável de ambiente ou usamos um fallback inseguro (apenas para desenvolvimento)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "default_secret_key")
"""
str: Chave secreta usada para assinar e verificar tokens JWT.
Carregada de uma variável de ambiente ou definida como um valor padrão para fins de desenvolvimento.
"""

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./settlement.db")
"""
str: URL de conexão com o banco de dados assíncrono.
Carregada de uma variável de ambiente ou definida como SQLite padrão em ambiente de desenvolvimento.
"""

JWT_EXPIRATION_MINUTES = int(os.getenv("JWT_EXPIRATION_MINUTES", 60))
"""
int: Tempo de expiração dos tokens JWT, em minutos.
"""

CRON_SECRET = os.getenv("CRON_SECRET", "default_cron_secret")
"""
str: Valor esperado no cabeçalho X-Cron-Secret das rotas de cron.
"""

RELEASE_SWEEP_INTERVAL_SECONDS = int(os.getenv("RELEASE_SWEEP_INTERVAL_SECONDS", 300))
RELEASE_SWEEP_BATCH_SIZE = int(os.getenv("RELEASE_SWEEP_BATCH_SIZE", 100))
RELEASE_SWEEP_TIME_BUDGET_SECONDS = float(os.getenv("RELEASE_SWEEP_TIME_BUDGET_SECONDS", 30))

RECONCILIATION_EPSILON = Decimal(os.getenv("RECONCILIATION_EPSILON", "0.01"))
"""
Decimal: Diferença máxima aceita entre saldos e razão antes de gerar uma anomalia.
"""

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
FINANCIAL_AUDIT_LOG = os.getenv("FINANCIAL_AUDIT_LOG")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:8080,http://127.0.0.1:3000,http://127.0.0.1:8080"
    ).split(",")
    if origin.strip()
]
"""
List[str]: Origens liberadas para requisições cross-origin.
"""

SESSION_MAKER_KEY = web.AppKey("session_maker", async_sessionmaker)
"""
web.AppKey[async_sessionmaker]: Chave para armazenar o criador de sessões na aplicação AIOHTTP.
"""

# O tipo do motor é resolvido em tempo de execução para evitar import circular
SETTLEMENT_ENGINE_KEY = web.AppKey("settlement_engine", object)
"""
web.AppKey[SettlementEngine]: Chave para armazenar o motor de liquidação na aplicação AIOHTTP.
"""

APP_TIMEZONE = ZoneInfo("America/Sao_Paulo")


def TIMEZONE() -> datetime:
    """
    Retorna a data e hora atual no fuso horário "America/Sao_Paulo".

    As datas são persistidas sem tzinfo, sempre no horário local da aplicação.

    Returns:
        datetime: Data e hora atual (naive) no fuso padrão.
    """
    return datetime.now(APP_TIMEZONE).replace(tzinfo=None)


def configure_logging(level: str = LOG_LEVEL) -> None:
    """
    Configura o logging padrão da aplicação.

    Args:
        level (str): Nível de log (DEBUG, INFO, WARNING...).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
    )
