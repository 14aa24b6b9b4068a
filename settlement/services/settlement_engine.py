# D:\Settlement\settlement\services\settlement_engine.py
"""
settlement_engine.py

Este módulo contém a classe SettlementEngine, ponto de entrada das operações do
motor de liquidação de fornecedores. O motor recebe explicitamente as suas
dependências (criador de sessões, relógio e factory de gateways) e coordena, para
cada operação, a sessão, a transação e o lock do fornecedor.

Classes:
    SettlementEngine: Fachada transacional sobre os serviços financeiros.

Regras de Negócio:
    - Toda operação que altera o razão de um fornecedor executa sob o lock desse
      fornecedor, em uma única transação (tudo ou nada)
    - Leituras de saldo usam sempre dados recalculados no momento da consulta
    - Antes de montar o extrato do fornecedor, os valores vencidos são liberados
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from settlement.config.settings import TIMEZONE
from settlement.models.database import Supplier
from settlement.services import (
    audit_service,
    export_service,
    ledger_service,
    reconciliation_service,
    release_scheduler,
    sale_service,
    settings_service,
    subscription_service,
    withdrawal_service,
)
from settlement.services.balance_service import compute_balances, verify_balance
from settlement.services.errors import NotFound
from settlement.services.payment.gateway_factory import PaymentGatewayFactory
from settlement.services.supplier_locks import SupplierLockRegistry

logger = logging.getLogger(__name__)


class SettlementEngine:
    """
    Motor de liquidação de fornecedores.

    Métodos principais:
        record_sale / refund_sale / post_adjustment: eventos de venda e ajustes.
        release_supplier / sweep_releases: liberação D+N.
        request_withdrawal / approve_withdrawal / reject_withdrawal: saques.
        pay_subscription / change_plan / check_overdue: assinaturas.
        supplier_financials: extrato consolidado do fornecedor.
        overview / reconciliation / anomalies / supplier_kpis / daily_revenue: BI.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        clock: Callable[[], datetime] = TIMEZONE,
        gateway_factory=PaymentGatewayFactory,
        locks: Optional[SupplierLockRegistry] = None
    ):
        """
        Inicializa o motor.

        Args:
            session_maker (async_sessionmaker): Criador de sessões assíncronas.
            clock (Callable[[], datetime]): Relógio (naive, fuso da aplicação).
            gateway_factory: Factory de gateways de pagamento.
            locks (Optional[SupplierLockRegistry]): Registro de locks por fornecedor.
        """
        self.session_maker = session_maker
        self.clock = clock
        self.gateway_factory = gateway_factory
        self.locks = locks or SupplierLockRegistry()

    # ---------- Vendas e ajustes ----------

    async def record_sale(self, supplier_id: int, order_id: str, gross_amount, completed_at: Optional[datetime] = None) -> Dict:
        now = self.clock()
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                summary = await sale_service.record_sale(
                    session, supplier_id, order_id, gross_amount, completed_at or now
                )
                # Retenção zero (ou pedido antigo) libera na hora
                await release_scheduler.release_due_entries(session, supplier_id, now)
        return summary

    async def refund_sale(self, order_id: str, reason: Optional[str] = None) -> Dict:
        async with self.session_maker() as session:
            supplier_id = await sale_service.find_order_supplier(session, order_id)
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                return await sale_service.refund_sale(session, order_id, reason, self.clock())

    async def post_adjustment(self, supplier_id: int, amount, description: str, admin: Optional[Dict] = None) -> Dict:
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                entry = await sale_service.post_adjustment(
                    session, supplier_id, amount, description, admin, self.clock()
                )
                return ledger_service.serialize_entry(entry)

    # ---------- Liberação ----------

    async def release_supplier(self, supplier_id: int) -> Dict:
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                return await release_scheduler.release_due_entries(session, supplier_id, self.clock())

    async def sweep_releases(self, batch_size: int = 100, time_budget: Optional[float] = None) -> Dict:
        return await release_scheduler.sweep(self, batch_size=batch_size, time_budget=time_budget)

    # ---------- Saldos e extrato ----------

    async def get_balances(self, supplier_id: int) -> Dict:
        async with self.session_maker() as session:
            balances = await compute_balances(session, supplier_id)
        return {key: float(value) for key, value in balances.items()}

    async def verify_balance(self, supplier_id: int) -> Dict:
        async with self.session_maker() as session, session.begin():
            return await verify_balance(session, supplier_id)

    async def list_ledger(self, supplier_id: int, **filters) -> Dict:
        page = filters.pop("page", 1)
        page_size = filters.pop("page_size", 20)
        async with self.session_maker() as session:
            entries, total = await ledger_service.list_for_supplier(
                session, supplier_id, page=page, page_size=page_size, **filters
            )
        return {
            "entries": [ledger_service.serialize_entry(entry) for entry in entries],
            "meta": {
                "page": page,
                "page_size": page_size,
                "total_count": total,
                "total_pages": (total + page_size - 1) // page_size,
            },
        }

    async def get_supplier(self, supplier_id: int) -> Supplier:
        async with self.session_maker() as session:
            supplier = await session.get(Supplier, supplier_id)
        if not supplier:
            raise NotFound(f"Fornecedor {supplier_id} não encontrado")
        return supplier

    async def supplier_financials(self, supplier_id: int, ledger_limit: int = 50) -> Dict:
        """
        Extrato consolidado: fornecedor, saldos, lançamentos recentes, assinatura,
        regras efetivas e limites de saque. Libera os valores vencidos antes da leitura.
        """
        await self.get_supplier(supplier_id)
        await self.release_supplier(supplier_id)

        now = self.clock()
        async with self.session_maker() as session:
            supplier = await session.get(Supplier, supplier_id)
            balances = await compute_balances(session, supplier_id)
            entries, _ = await ledger_service.list_for_supplier(session, supplier_id, page_size=ledger_limit)
            subscription = await settings_service.get_active_subscription(session, supplier_id)
            limits = await withdrawal_service.get_withdrawal_limits(session, supplier, now)
            terms = await subscription_service.get_terms_summary(session, supplier)

        return {
            "supplier": {
                "id": supplier.id,
                "name": supplier.name,
                "accountId": supplier.account_id,
                "financialStatus": supplier.financial_status.value,
                "planId": supplier.plan_id,
                "pendingPlanId": supplier.pending_plan_id,
                "nextBillingDate": supplier.next_billing_date.isoformat() if supplier.next_billing_date else None,
                "pixKey": supplier.pix_key,
                "billingName": supplier.billing_name,
                "billingDoc": supplier.billing_doc,
                "billingAddress": supplier.billing_address,
                "billingEmail": supplier.billing_email,
                "walletBalance": float(balances["wallet_balance"]),
                "pendingBalance": float(balances["pending_balance"]),
                "blockedBalance": float(balances["blocked_balance"]),
            },
            "balances": {key: float(value) for key, value in balances.items()},
            "ledger": [ledger_service.serialize_entry(entry) for entry in entries],
            "subscription": subscription_service.serialize_subscription(subscription),
            "terms": terms,
            "withdrawalLimits": limits,
        }

    # ---------- Saques ----------

    async def request_withdrawal(
        self,
        supplier_id: int,
        amount,
        pix_key: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Dict:
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                request, created = await withdrawal_service.create_withdrawal_request(
                    session, supplier_id, amount, pix_key, self.clock(), idempotency_key
                )
                data = withdrawal_service.serialize_request(request)
        data["created"] = created
        return data

    async def _supplier_of_request(self, request_id: int) -> int:
        async with self.session_maker() as session:
            request = await withdrawal_service.get_withdrawal_request(session, request_id)
            return request.supplier_id

    async def approve_withdrawal(self, request_id: int, admin: Optional[Dict] = None) -> Dict:
        supplier_id = await self._supplier_of_request(request_id)
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                request = await withdrawal_service.approve_withdrawal(session, request_id, admin, self.clock())
                return withdrawal_service.serialize_request(request)

    async def reject_withdrawal(self, request_id: int, reason: str, admin: Optional[Dict] = None) -> Dict:
        supplier_id = await self._supplier_of_request(request_id)
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                request = await withdrawal_service.reject_withdrawal(
                    session, request_id, reason, admin, self.clock()
                )
                return withdrawal_service.serialize_request(request)

    async def list_withdrawals(self, status: Optional[str] = None, supplier_id: Optional[int] = None,
                               start_date=None, end_date=None, page: int = 1, page_size: int = 20) -> Dict:
        async with self.session_maker() as session:
            requests, total = await withdrawal_service.list_withdrawal_requests(
                session, status, supplier_id, start_date, end_date, page, page_size
            )
            names = {}
            for request in requests:
                if request.supplier_id not in names:
                    supplier = await session.get(Supplier, request.supplier_id)
                    names[request.supplier_id] = supplier.name if supplier else None
        return {
            "withdrawals": [
                withdrawal_service.serialize_request(request, names.get(request.supplier_id))
                for request in requests
            ],
            "meta": {
                "page": page,
                "page_size": page_size,
                "total_count": total,
                "total_pages": (total + page_size - 1) // page_size,
            },
        }

    # ---------- Assinaturas ----------

    async def pay_subscription(self, supplier_id: int, method, payment_token: Optional[str] = None,
                               amount=None, gateway: Optional[str] = None) -> Dict:
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                return await subscription_service.pay_subscription(
                    session, supplier_id, method, self.clock(), self.gateway_factory,
                    payment_token=payment_token, amount=amount, gateway_name=gateway
                )

    async def change_plan(self, supplier_id: int, plan_id: int) -> Dict:
        async with self.locks.hold(supplier_id):
            async with self.session_maker() as session, session.begin():
                return await subscription_service.change_plan(session, supplier_id, plan_id)

    async def update_billing_info(self, supplier_id: int, data: Dict) -> Dict:
        async with self.session_maker() as session, session.begin():
            supplier = await subscription_service.update_billing_info(session, supplier_id, data)
            return {
                "supplierId": supplier.id,
                "billingName": supplier.billing_name,
                "billingDoc": supplier.billing_doc,
                "billingAddress": supplier.billing_address,
                "billingEmail": supplier.billing_email,
                "pixKey": supplier.pix_key,
            }

    async def check_overdue(self) -> Dict:
        async with self.session_maker() as session, session.begin():
            return await subscription_service.check_overdue(session, self.clock())

    async def list_plans(self) -> list:
        async with self.session_maker() as session:
            plans = await subscription_service.list_plans(session)
        return [subscription_service.serialize_plan(plan) for plan in plans]

    async def create_plan(self, data: Dict, admin: Optional[Dict] = None) -> Dict:
        async with self.session_maker() as session, session.begin():
            plan = await subscription_service.create_plan(session, data, admin)
            return subscription_service.serialize_plan(plan)

    # ---------- Configurações e auditoria ----------

    async def get_settings(self) -> Dict:
        async with self.session_maker() as session, session.begin():
            return serialize_settings(await settings_service.get_settings(session))

    async def update_settings(self, data: Dict, admin: Optional[Dict] = None) -> Dict:
        async with self.session_maker() as session, session.begin():
            return serialize_settings(await settings_service.update_settings(session, data, admin))

    async def audit_logs(self, action: Optional[str] = None, start_date=None, end_date=None,
                         page: int = 1, page_size: int = 50) -> Dict:
        async with self.session_maker() as session:
            logs, total = await audit_service.list_admin_logs(session, action, start_date, end_date, page, page_size)
        return {
            "logs": [
                {
                    "id": log.id,
                    "adminId": log.admin_id,
                    "adminName": log.admin_name,
                    "action": log.action,
                    "targetId": log.target_id,
                    "details": log.details,
                    "reason": log.reason,
                    "createdAt": log.created_at.isoformat() if log.created_at else None,
                }
                for log in logs
            ],
            "meta": {"page": page, "page_size": page_size, "total_count": total},
        }

    # ---------- Conciliação e BI ----------

    async def overview(self, start=None, end=None, supplier_id: Optional[int] = None) -> Dict:
        async with self.session_maker() as session:
            return await reconciliation_service.overview(session, self.clock(), start, end, supplier_id)

    async def daily_revenue(self, period: str = "30d", supplier_id: Optional[int] = None) -> list:
        async with self.session_maker() as session:
            return await reconciliation_service.daily_revenue(session, self.clock(), period, supplier_id=supplier_id)

    async def reconciliation(self, supplier_id: Optional[int] = None, start=None, end=None) -> Dict:
        async with self.session_maker() as session:
            return await reconciliation_service.reconciliation(session, supplier_id, start, end)

    async def anomalies(self) -> list:
        async with self.session_maker() as session, session.begin():
            return await reconciliation_service.anomalies(session, self.clock())

    async def supplier_kpis(self, supplier_id: Optional[int] = None, search: Optional[str] = None,
                            status: Optional[str] = None) -> list:
        async with self.session_maker() as session:
            return await reconciliation_service.supplier_kpis(session, supplier_id, search, status)

    async def accounting_export(self, start, end, supplier_id: Optional[int] = None) -> Dict:
        async with self.session_maker() as session:
            return await export_service.accounting_export(session, start, end, supplier_id)

    async def admin_dashboard(self, start=None, end=None, supplier_id: Optional[int] = None) -> Dict:
        data = await self.overview(start, end, supplier_id)
        async with self.session_maker() as session:
            pending, _ = await withdrawal_service.list_withdrawal_requests(session, "PENDING", supplier_id, page_size=5)
        data["recentPendingWithdrawals"] = [withdrawal_service.serialize_request(r) for r in pending]
        return data


def serialize_settings(settings) -> Dict:
    return {
        "defaultReleaseDays": settings.default_release_days,
        "defaultMinWithdrawal": float(settings.default_min_withdrawal),
        "defaultWithdrawalLimit": settings.default_withdrawal_limit,
        "defaultCommissionPercent": float(settings.default_commission_percent),
        "withdrawalSlaDays": settings.withdrawal_sla_days,
        "updatedAt": settings.updated_at.isoformat() if settings.updated_at else None,
    }
