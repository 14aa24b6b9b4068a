# D:\Settlement\settlement\tests\conftest.py

"""
conftest.py

Este módulo contém fixtures para configuração de banco de dados, motor de liquidação
e cliente de teste utilizados nos testes da aplicação.

Fixtures:
    setup_database: Cria um banco SQLite temporário com todas as tabelas.
    session_maker: Criador de sessões assíncronas ligado ao banco de teste.
    async_db_session: Sessão de banco de dados assíncrona para testes.
    clock: Relógio controlável usado pelo motor.
    mock_payment_gateways: Factory de gateways com mocks do Stripe e Mercado Pago.
    settlement_engine: Motor de liquidação com relógio e gateways de teste.
    test_client_fixture: Cliente de teste para a aplicação AIOHTTP.
"""

from datetime import datetime, timedelta
from unittest import mock

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer, TestClient

from settlement.config.settings import SESSION_MAKER_KEY, SETTLEMENT_ENGINE_KEY
from settlement.models.database import Base, get_async_engine, get_session_maker
from settlement.services.settlement_engine import SettlementEngine
from settlement.views.bi_views import routes as bi_routes
from settlement.views.financial_admin_views import routes as financial_admin_routes
from settlement.views.financial_views import routes as financial_routes


class FrozenClock:
    """Relógio de teste: retorna sempre o mesmo instante até ser avançado."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


@pytest_asyncio.fixture(scope="function")
async def setup_database(tmp_path):
    """
    Configura um banco de dados SQLite em arquivo temporário, compartilhado por
    todas as sessões do teste.
    """
    engine = get_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'settlement_test.db'}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(setup_database):
    return get_session_maker(setup_database)


@pytest_asyncio.fixture(scope="function")
async def async_db_session(session_maker):
    """
    Configura uma sessão de banco de dados assíncrona para testes.

    Yields:
        AsyncSession: Sessão ligada ao banco compartilhado do teste.
    """
    async with session_maker() as session:
        yield session


@pytest.fixture
def clock():
    """Relógio controlável, iniciando em 10/01/2024 12:00 (horário local)."""
    return FrozenClock(datetime(2024, 1, 10, 12, 0, 0))


@pytest.fixture
def mock_payment_gateways():
    """
    Factory de gateways de pagamento com mocks.

    O Stripe aprova por padrão; os testes alteram `charge_token.return_value`
    para simular recusas.

    Returns:
        dict: factory, stripe e mercado_pago
    """
    mock_stripe = mock.MagicMock()
    mock_stripe.charge_token = mock.AsyncMock(
        return_value=(True, None, {"gateway_transaction_id": "ch_test_123", "status": "approved"})
    )
    mock_mp = mock.MagicMock()
    mock_mp.charge_token = mock.AsyncMock(
        return_value=(True, None, {"gateway_transaction_id": "mp_test_123", "status": "approved"})
    )

    def mock_get_gateway(gateway_name):
        if gateway_name.lower() == "stripe":
            return mock_stripe
        elif gateway_name.lower() == "mercado_pago":
            return mock_mp
        else:
            raise ValueError(f"Gateway não suportado: {gateway_name}")

    factory = mock.MagicMock()
    factory.get_gateway.side_effect = mock_get_gateway
    return {"factory": factory, "stripe": mock_stripe, "mercado_pago": mock_mp}


@pytest.fixture
def settlement_engine(session_maker, clock, mock_payment_gateways):
    return SettlementEngine(session_maker, clock=clock, gateway_factory=mock_payment_gateways["factory"])


@pytest_asyncio.fixture(scope="function")
async def test_client_fixture(session_maker, settlement_engine):
    """
    Configura um cliente de teste para a aplicação AIOHTTP.

    O worker de liberação não é iniciado; os testes disparam a varredura explicitamente.

    Yields:
        TestClient: Cliente de teste configurado para a aplicação.
    """
    app = web.Application()
    app[SESSION_MAKER_KEY] = session_maker
    app[SETTLEMENT_ENGINE_KEY] = settlement_engine

    app.add_routes(financial_routes)
    app.add_routes(financial_admin_routes)
    app.add_routes(bi_routes)

    server = TestServer(app)
    client = TestClient(server)

    async with server, client:
        yield client
