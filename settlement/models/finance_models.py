# D:\Settlement\settlement\models\finance_models.py
"""
finance_models.py

Módulo que define os modelos de dados (ORM) do razão financeiro de fornecedores,
usando SQLAlchemy.

Funcionalidades principais:
    - Razão (ledger) somente-inclusão de eventos financeiros por fornecedor
    - Saldo materializado (disponível, pendente e bloqueado) por fornecedor
    - Controle de solicitações de saque
    - Configurações financeiras globais
    - Log de ações administrativas
    - Integração com gateways de pagamento externos

Regras de Negócio:
    - Lançamentos nunca são apagados nem têm valor ou tipo alterados; apenas o status muda
    - Créditos são positivos (SALE_REVENUE) e débitos negativos (SALE_COMMISSION,
      SUBSCRIPTION_PAYMENT, PAYOUT); ADJUSTMENT aceita os dois sinais
    - O saldo materializado deve ser sempre igual à reconstrução completa do razão
    - Valores monetários são Decimal com duas casas

Dependências:
    - SQLAlchemy para ORM
    - settlement.models.database para Base e modelos de fornecedores
"""

import enum
from sqlalchemy import (
    Column, Integer, String, Numeric, Enum, DateTime, ForeignKey, Boolean, Text, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from settlement.config.settings import TIMEZONE
from settlement.models.database import Base


class LedgerEntryType(str, enum.Enum):
    SALE_REVENUE = "SALE_REVENUE"
    SALE_COMMISSION = "SALE_COMMISSION"
    SUBSCRIPTION_PAYMENT = "SUBSCRIPTION_PAYMENT"
    PAYOUT = "PAYOUT"
    ADJUSTMENT = "ADJUSTMENT"


class LedgerEntryStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class WithdrawalStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REJECTED = "REJECTED"


class PaymentMethod(str, enum.Enum):
    BALANCE = "BALANCE"
    CARD = "CARD"


class AdjustmentSource(str, enum.Enum):
    """Origem de um ADJUSTMENT: correção administrativa, estorno ou recebimento do gateway."""
    ADMIN = "ADMIN"
    REFUND = "REFUND"
    CARD_GATEWAY = "CARD_GATEWAY"


# Lançamentos de venda retidos até a data de liberação (D+N)
HELD_ENTRY_TYPES = (LedgerEntryType.SALE_REVENUE, LedgerEntryType.SALE_COMMISSION)


class LedgerEntry(Base):
    """
    Representa um evento financeiro no razão de um fornecedor.

    Attributes:
        id (int): ID único do lançamento.
        supplier_id (int): Fornecedor dono do lançamento.
        type (LedgerEntryType): Tipo do lançamento.
        amount (Decimal): Valor com sinal (crédito > 0, débito < 0).
        status (LedgerEntryStatus): PENDING, COMPLETED ou REJECTED.
        release_date (datetime): Data de liberação (apenas vendas retidas).
        order_id (str): Pedido de origem, quando houver.
        description (str): Descrição do lançamento.
        source (AdjustmentSource): Origem do ajuste (apenas ADJUSTMENT).
        created_at (datetime): Data de criação.
        updated_at (datetime): Data da última transição de status.
    """
    __tablename__ = 'ledger_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=False, index=True)
    type = Column(Enum(LedgerEntryType, name='ledger_entry_type'), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(
        Enum(LedgerEntryStatus, name='ledger_entry_status'),
        nullable=False,
        default=LedgerEntryStatus.COMPLETED
    )
    release_date = Column(DateTime, nullable=True)
    order_id = Column(String(100), nullable=True, index=True)
    description = Column(String(255), nullable=True)
    source = Column(Enum(AdjustmentSource, name='adjustment_source'), nullable=True)
    created_at = Column(DateTime, default=TIMEZONE)
    updated_at = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)

    supplier = relationship("Supplier")

    __table_args__ = (
        Index('ix_ledger_status_release', 'status', 'release_date'),
    )


class SupplierBalance(Base):
    """
    Saldo materializado de um fornecedor, atualizado na mesma transação de cada
    movimentação do razão.

    Attributes:
        id (int): ID único do registro.
        supplier_id (int): Fornecedor associado.
        wallet_balance (Decimal): Saldo disponível para saque.
        pending_balance (Decimal): Saldo retido aguardando liberação.
        blocked_balance (Decimal): Saldo reservado para saques em andamento.
        last_updated (datetime): Data da última atualização.
    """
    __tablename__ = 'supplier_balances'

    id = Column(Integer, primary_key=True, autoincrement=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id', ondelete="CASCADE"), nullable=False, unique=True)
    wallet_balance = Column(Numeric(12, 2), nullable=False, default=0)
    pending_balance = Column(Numeric(12, 2), nullable=False, default=0)
    blocked_balance = Column(Numeric(12, 2), nullable=False, default=0)
    last_updated = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)

    supplier = relationship("Supplier")


class WithdrawalRequest(Base):
    """
    Representa uma solicitação de saque de um fornecedor.

    Attributes:
        id (int): ID único da solicitação.
        supplier_id (int): Fornecedor solicitante.
        amount (Decimal): Valor solicitado.
        pix_key (str): Chave PIX de destino.
        status (WithdrawalStatus): PENDING, PAID ou REJECTED.
        requested_at (datetime): Data da solicitação.
        processed_at (datetime): Data do processamento.
        processed_by (int): Administrador que processou.
        reason (str): Motivo da rejeição.
        idempotency_key (str): Chave de idempotência enviada pelo cliente.
        ledger_entry_id (int): Lançamento PAYOUT vinculado à reserva.
    """
    __tablename__ = 'withdrawal_requests'

    id = Column(Integer, primary_key=True, autoincrement=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    pix_key = Column(String(255), nullable=False)
    status = Column(
        Enum(WithdrawalStatus, name='withdrawal_status'),
        nullable=False,
        default=WithdrawalStatus.PENDING
    )
    requested_at = Column(DateTime, default=TIMEZONE)
    processed_at = Column(DateTime, nullable=True)
    processed_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    reason = Column(Text, nullable=True)
    idempotency_key = Column(String(100), nullable=True)
    ledger_entry_id = Column(Integer, ForeignKey('ledger_entries.id'), nullable=True)

    supplier = relationship("Supplier")
    ledger_entry = relationship("LedgerEntry")

    __table_args__ = (
        UniqueConstraint('supplier_id', 'idempotency_key', name='uq_withdrawal_idempotency'),
    )


class FinancialSettings(Base):
    """
    Configurações financeiras globais (registro único).

    Attributes:
        default_release_days (int): Dias de retenção padrão (D+N).
        default_min_withdrawal (Decimal): Saque mínimo padrão.
        default_withdrawal_limit (int): Saques por mês padrão.
        default_commission_percent (Decimal): Comissão padrão (0-100).
        withdrawal_sla_days (int): Dias até um saque pendente virar anomalia.
        updated_at (datetime): Data da última alteração.
    """
    __tablename__ = 'financial_settings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    default_release_days = Column(Integer, nullable=False, default=14)
    default_min_withdrawal = Column(Numeric(12, 2), nullable=False, default=50)
    default_withdrawal_limit = Column(Integer, nullable=False, default=4)
    default_commission_percent = Column(Numeric(5, 2), nullable=False, default=10)
    withdrawal_sla_days = Column(Integer, nullable=False, default=3)
    updated_at = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)


class AdminLog(Base):
    """
    Registro de auditoria de ações administrativas.

    Attributes:
        admin_id (int): Administrador que executou a ação.
        admin_name (str): Nome do administrador no momento da ação.
        action (str): Ação executada (ex.: WITHDRAWAL_APPROVED).
        target_id (str): Identificador do alvo da ação.
        details (str): Detalhes em JSON.
        reason (str): Justificativa informada.
        created_at (datetime): Data da ação.
    """
    __tablename__ = 'admin_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    admin_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    admin_name = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    target_id = Column(String(100), nullable=True)
    details = Column(Text, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=TIMEZONE)


class PaymentGatewayConfig(Base):
    """
    Representa a configuração de um gateway de pagamento no sistema.

    Attributes:
        gateway_name (str): Nome do gateway (stripe, mercado_pago).
        is_active (bool): Se o gateway está ativo.
        api_key (str): Chave API do gateway.
        api_secret (str): Segredo API do gateway.
        configuration (str): Configurações adicionais em JSON.
    """
    __tablename__ = 'payment_gateway_configs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    gateway_name = Column(String(50), nullable=False, unique=True)
    is_active = Column(Boolean, default=True, nullable=False)
    api_key = Column(String(255), nullable=False)
    api_secret = Column(String(255), nullable=True)
    configuration = Column(Text, nullable=True)
    created_at = Column(DateTime, default=TIMEZONE)
    updated_at = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)


class PaymentTransaction(Base):
    """
    Representa uma cobrança de assinatura processada por um gateway.

    Attributes:
        supplier_id (int): Fornecedor cobrado.
        subscription_id (int): Assinatura criada pela cobrança.
        gateway (str): Gateway utilizado.
        amount (Decimal): Valor cobrado.
        gateway_transaction_id (str): ID da cobrança no gateway.
        status (str): 'approved' ou 'refused'.
        payment_details (str): Detalhes em JSON (nunca dados de cartão).
    """
    __tablename__ = 'payment_transactions'

    id = Column(Integer, primary_key=True, autoincrement=True)
    supplier_id = Column(Integer, ForeignKey('suppliers.id'), nullable=False)
    subscription_id = Column(Integer, ForeignKey('supplier_subscriptions.id'), nullable=True)
    gateway = Column(String(50), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default='BRL')
    gateway_transaction_id = Column(String(255), nullable=False, unique=True)
    status = Column(
        Enum('approved', 'refused', name='payment_transaction_status'),
        nullable=False,
        default='approved'
    )
    payment_details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=TIMEZONE)
