# D:\Settlement\settlement\models\database.py
"""
database.py

Este módulo define os modelos de dados (ORM) de contas, usuários, planos e fornecedores
usando SQLAlchemy, além das enumerações fechadas do domínio e dos métodos para criação
e interação com o banco de dados de forma assíncrona.

Enumerações:
    Role: Papéis de usuário (SYSTEM_ADMIN, ACCOUNT_ADMIN, SELLER, SUPPLIER).
    AccountType: Tipo de conta (INDIVIDUAL, BUSINESS).
    SupplierFinancialStatus: Situação financeira do fornecedor.
    SubscriptionStatus: Situação de uma assinatura de plano.

Classes:
    Account: Representa uma conta (tenant) do marketplace.
    User: Representa um usuário no sistema.
    Plan: Representa um plano de assinatura com sobrescritas das regras financeiras.
    Supplier: Representa um fornecedor e seus dados de cobrança.
    SupplierSubscription: Representa uma assinatura de plano de um fornecedor.

Functions:
    create_database(db_url: str) -> None:
        Cria o schema do banco de dados assíncrono, se não existir.

    get_async_engine(db_url: str):
        Retorna o motor assíncrono configurado para o banco de dados.

    get_session_maker(engine):
        Retorna o criador de sessões assíncronas para o banco de dados.
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, Enum, DateTime, ForeignKey
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker
)
from settlement.config.settings import TIMEZONE

Base = declarative_base()


class Role(str, enum.Enum):
    """Papéis de usuário. O valor legado 'ADMIN' é convertido em SYSTEM_ADMIN."""
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    ACCOUNT_ADMIN = "ACCOUNT_ADMIN"
    SELLER = "SELLER"
    SUPPLIER = "SUPPLIER"

    @classmethod
    def parse(cls, value) -> "Role":
        """
        Converte um valor textual em Role.

        Args:
            value: Valor recebido (ex.: do payload do token).

        Returns:
            Role: Papel correspondente.

        Raises:
            ValueError: Se o papel for desconhecido.
        """
        if isinstance(value, Role):
            return value
        if value == "ADMIN":
            return cls.SYSTEM_ADMIN
        return cls(value)


class AccountType(str, enum.Enum):
    INDIVIDUAL = "INDIVIDUAL"
    BUSINESS = "BUSINESS"


class SupplierFinancialStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    OVERDUE = "OVERDUE"


class SubscriptionStatus(str, enum.Enum):
    ATIVA = "ATIVA"
    PENDENTE = "PENDENTE"
    VENCIDA = "VENCIDA"
    SUSPENSA = "SUSPENSA"


class Account(Base):
    """
    Representa uma conta (tenant) do marketplace.

    Attributes:
        id (int): ID único da conta.
        name (str): Nome da conta.
        type (AccountType): INDIVIDUAL ou BUSINESS.
        created_at (datetime): Data de criação.
    """
    __tablename__ = 'accounts'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    type = Column(Enum(AccountType, name='account_type'), nullable=False, default=AccountType.BUSINESS)
    created_at = Column(DateTime, default=TIMEZONE)

    users = relationship("User", back_populates="account")
    suppliers = relationship("Supplier", back_populates="account")


class User(Base):
    """
    Representa um usuário no sistema.

    A identidade é sempre estabelecida externamente: este modelo guarda apenas o
    necessário para autorização (papel e conta).

    Attributes:
        id (int): ID único do usuário.
        name (str): Nome do usuário.
        email (str): E-mail do usuário.
        role (Role): Papel do usuário.
        account_id (int): Conta à qual o usuário pertence.
        created_at (datetime): Data de criação.
    """
    __tablename__ = 'users'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(Enum(Role, name='user_role'), nullable=False)
    account_id = Column(Integer, ForeignKey('accounts.id'), nullable=True)
    created_at = Column(DateTime, default=TIMEZONE)

    account = relationship("Account", back_populates="users")


class Plan(Base):
    """
    Representa um plano de assinatura.

    Os campos de regra financeira são opcionais: quando nulos, valem os padrões
    globais de FinancialSettings.

    Attributes:
        id (int): ID único do plano.
        name (str): Nome do plano.
        monthly_price (Decimal): Mensalidade do plano.
        cycle_days (int): Duração do ciclo de cobrança, em dias.
        commission_percent (Decimal): Percentual de comissão (0-100).
        release_days (int): Dias de retenção (D+N) das vendas.
        min_withdrawal (Decimal): Valor mínimo de saque.
        withdrawal_limit (int): Quantidade máxima de saques por mês.
    """
    __tablename__ = 'plans'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    monthly_price = Column(Numeric(12, 2), nullable=False, default=0)
    cycle_days = Column(Integer, nullable=False, default=30)
    commission_percent = Column(Numeric(5, 2), nullable=True)
    release_days = Column(Integer, nullable=True)
    min_withdrawal = Column(Numeric(12, 2), nullable=True)
    withdrawal_limit = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=TIMEZONE)


class Supplier(Base):
    """
    Representa um fornecedor do marketplace.

    Attributes:
        id (int): ID único do fornecedor.
        name (str): Nome do fornecedor.
        account_id (int): Conta dona do fornecedor.
        user_id (int): Usuário responsável pelo fornecedor.
        financial_status (SupplierFinancialStatus): Situação financeira.
        plan_id (int): Plano atual.
        pending_plan_id (int): Plano agendado para o próximo ciclo.
        next_billing_date (datetime): Próximo vencimento da assinatura.
        pix_key (str): Chave PIX padrão para saques.
        billing_name / billing_doc / billing_address / billing_email: Dados de faturamento.
    """
    __tablename__ = 'suppliers'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    account_id = Column(Integer, ForeignKey('accounts.id'), nullable=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    financial_status = Column(
        Enum(SupplierFinancialStatus, name='supplier_financial_status'),
        nullable=False,
        default=SupplierFinancialStatus.ACTIVE
    )
    plan_id = Column(Integer, ForeignKey('plans.id'), nullable=True)
    pending_plan_id = Column(Integer, ForeignKey('plans.id'), nullable=True)
    next_billing_date = Column(DateTime, nullable=True)
    pix_key = Column(String(255), nullable=True)
    billing_name = Column(String(255), nullable=True)
    billing_doc = Column(String(50), nullable=True)
    billing_address = Column(String(500), nullable=True)
    billing_email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=TIMEZONE)

    account = relationship("Account", back_populates="suppliers")
    user = relationship("User")
    plan = relationship("Plan", foreign_keys=[plan_id])
    pending_plan = relationship("Plan", foreign_keys=[pending_plan_id])
    subscriptions = relationship("SupplierSubscription", back_populates="supplier")


class SupplierSubscription(Base):
    """
    Representa uma assinatura de plano de um fornecedor.

    Attributes:
        id (int): ID único da assinatura.
        supplier_id (int): Fornecedor assinante.
        plan_id (int): Plano assinado.
        status (SubscriptionStatus): ATIVA, PENDENTE, VENCIDA ou SUSPENSA.
        start_date (datetime): Início do ciclo.
        end_date (datetime): Fim do ciclo.
    """
    __tablename__ = 'supplier_subscriptions'
    id = Column(Integer, primary_key=True, autoincrement=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id', ondelete="CASCADE"), nullable=False)
    plan_id = Column(Integer, ForeignKey('plans.id'), nullable=False)
    status = Column(
        Enum(SubscriptionStatus, name='subscription_status'),
        nullable=False,
        default=SubscriptionStatus.PENDENTE
    )
    start_date = Column(DateTime, nullable=False, default=TIMEZONE)
    end_date = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=TIMEZONE)

    supplier = relationship("Supplier", back_populates="subscriptions")
    plan = relationship("Plan")


# ========== Métodos para criação do banco de dados de forma assíncrona ==========

async def create_database(db_url: str = "sqlite+aiosqlite:///./settlement.db"):
    """
    Cria o schema no banco de dados assíncrono, se não existir.

    Args:
        db_url (str): URL do banco de dados. O padrão é um SQLite local.

    Returns:
        None
    """
    engine = create_async_engine(db_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


def get_async_engine(db_url: str = "sqlite+aiosqlite:///./settlement.db"):
    """
    Retorna o motor assíncrono configurado para o banco de dados.

    Args:
        db_url (str): URL do banco de dados. O padrão é um SQLite local.

    Returns:
        AsyncEngine: Instância do motor assíncrono.
    """
    return create_async_engine(db_url, echo=False)


def get_session_maker(engine):
    """
    Retorna o criador de sessões assíncronas para o banco de dados.

    Args:
        engine: Instância do motor do banco de dados.

    Returns:
        async_sessionmaker: Criador de sessões assíncronas.
    """
    return async_sessionmaker(bind=engine, expire_on_commit=False)

# Importação no final para registrar as tabelas financeiras no metadata
from settlement.models import finance_models  # noqa: E402,F401
