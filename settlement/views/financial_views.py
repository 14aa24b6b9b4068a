# D:\Settlement\settlement\views\financial_views.py
"""
financial_views.py

Módulo responsável pelos endpoints financeiros do fornecedor: extrato, saques,
assinatura e dados de faturamento. Inclui também os ganchos internos de pedidos
e as rotas de cron.

Endpoints:
    - GET /financial/supplier/{id}: Extrato consolidado do fornecedor
    - GET /financial/ledger: Lançamentos filtrados e paginados
    - POST /financial/withdraw: Solicita um saque (aceita Idempotency-Key)
    - POST /financial/subscription/pay: Paga a assinatura (BALANCE ou CARD)
    - POST /financial/subscription/change-plan: Troca de plano
    - POST /financial/billing-info: Atualiza dados de faturamento
    - GET /financial/plans: Catálogo de planos
    - POST /financial/internal/order-completed: Registra a venda de um pedido
    - POST /financial/internal/order-refunded: Estorna a venda de um pedido
    - POST /financial/cron/release: Executa a varredura de liberação
    - POST /financial/cron/check-overdue: Marca assinaturas vencidas

Regras de Negócio:
    - Fornecedores acessam apenas os próprios dados; ACCOUNT_ADMIN acessa os
      fornecedores da sua conta; SYSTEM_ADMIN acessa todos
    - Ganchos internos são restritos a SYSTEM_ADMIN
    - Rotas de cron exigem o cabeçalho X-Cron-Secret

Dependências:
    - aiohttp para rotas
    - settlement.services.settlement_engine para a lógica financeira
    - settlement.middleware.authorization_middleware para autenticação
"""

from aiohttp import web

from settlement.config.settings import RELEASE_SWEEP_BATCH_SIZE, RELEASE_SWEEP_TIME_BUDGET_SECONDS
from settlement.middleware.authorization_middleware import require_role, require_cron_secret
from settlement.models.database import Role
from settlement.services.errors import InvalidEntry
from settlement.views.view_utils import (
    get_engine, handle_errors, json_ok, parse_date, parse_int, parse_json, resolve_supplier_id
)

routes = web.RouteTableDef()

SUPPLIER_ROLES = [Role.SUPPLIER, Role.ACCOUNT_ADMIN, Role.SYSTEM_ADMIN]

BILLING_BODY_FIELDS = {
    "billingName": "billing_name",
    "billingDoc": "billing_doc",
    "billingAddress": "billing_address",
    "billingEmail": "billing_email",
    "pixKey": "pix_key",
}


@routes.get('/financial/supplier/{supplier_id}')
@require_role(SUPPLIER_ROLES)
@handle_errors
async def get_supplier_financials(request: web.Request) -> web.Response:
    """
    Retorna o extrato consolidado do fornecedor.

    Os valores com liberação vencida são liberados antes da leitura.

    Returns:
        web.Response: JSON com supplier, balances, ledger, subscription, terms
            e withdrawalLimits
    """
    supplier_id = await resolve_supplier_id(request, request.match_info["supplier_id"])
    data = await get_engine(request).supplier_financials(supplier_id)
    return json_ok(data)


@routes.get('/financial/ledger')
@require_role(SUPPLIER_ROLES)
@handle_errors
async def get_ledger(request: web.Request) -> web.Response:
    """
    Lista os lançamentos do fornecedor, mais recentes primeiro.

    Query params:
        supplierId (int, opcional): Obrigatório para administradores
        type (str, opcional): Tipo do lançamento
        status (str, opcional): Status do lançamento
        start_date / end_date (str, opcional): Período (ISO)
        page / page_size (int, opcional): Paginação
    """
    supplier_id = await resolve_supplier_id(request, request.query.get("supplierId"))
    data = await get_engine(request).list_ledger(
        supplier_id,
        entry_type=request.query.get("type"),
        status=request.query.get("status"),
        start_date=parse_date(request.query.get("start_date"), "start_date"),
        end_date=parse_date(request.query.get("end_date"), "end_date"),
        page=parse_int(request.query.get("page"), "page", 1, minimum=1),
        page_size=parse_int(request.query.get("page_size"), "page_size", 20, minimum=1),
    )
    return json_ok(data)


@routes.post('/financial/withdraw')
@require_role(SUPPLIER_ROLES)
@handle_errors
async def request_withdrawal(request: web.Request) -> web.Response:
    """
    Solicita um saque do saldo disponível.

    Body:
        supplierId (int, opcional para fornecedores), amount (number), pixKey (str, opcional)

    Headers:
        Idempotency-Key (opcional): repetições devolvem a solicitação original

    Returns:
        web.Response: 201 com a solicitação criada, ou 200 se for uma repetição
    """
    data = await parse_json(request)
    supplier_id = await resolve_supplier_id(request, data.get("supplierId"))
    if data.get("amount") is None:
        raise InvalidEntry("amount é obrigatório")

    result = await get_engine(request).request_withdrawal(
        supplier_id,
        data["amount"],
        pix_key=data.get("pixKey"),
        idempotency_key=request.headers.get("Idempotency-Key")
    )
    created = result.pop("created")
    return json_ok(
        {"message": "Solicitação de saque registrada", "withdrawal": result},
        status=201 if created else 200
    )


@routes.post('/financial/subscription/pay')
@require_role(SUPPLIER_ROLES)
@handle_errors
async def pay_subscription(request: web.Request) -> web.Response:
    """
    Paga o ciclo atual da assinatura.

    Body:
        supplierId (int), method ('BALANCE' | 'CARD'), amount (number, opcional),
        paymentToken (str, obrigatório para CARD), gateway (str, opcional)
    """
    data = await parse_json(request)
    supplier_id = await resolve_supplier_id(request, data.get("supplierId"))
    result = await get_engine(request).pay_subscription(
        supplier_id,
        (data.get("method") or "").upper(),
        payment_token=data.get("paymentToken"),
        amount=data.get("amount"),
        gateway=data.get("gateway")
    )
    return json_ok({"message": "Assinatura paga com sucesso", **result})


@routes.post('/financial/subscription/change-plan')
@require_role(SUPPLIER_ROLES)
@handle_errors
async def change_plan(request: web.Request) -> web.Response:
    data = await parse_json(request)
    supplier_id = await resolve_supplier_id(request, data.get("supplierId"))
    plan_id = parse_int(data.get("planId"), "planId")
    if plan_id is None:
        raise InvalidEntry("planId é obrigatório")
    result = await get_engine(request).change_plan(supplier_id, plan_id)
    return json_ok(result)


@routes.post('/financial/billing-info')
@require_role(SUPPLIER_ROLES)
@handle_errors
async def update_billing_info(request: web.Request) -> web.Response:
    """
    Atualiza os dados de faturamento e a chave PIX do fornecedor.

    Body:
        supplierId, billingName, billingDoc, billingAddress, billingEmail, pixKey
    """
    data = await parse_json(request)
    supplier_id = await resolve_supplier_id(request, data.get("supplierId"))
    fields = {
        field: data[key]
        for key, field in BILLING_BODY_FIELDS.items()
        if data.get(key) is not None
    }
    result = await get_engine(request).update_billing_info(supplier_id, fields)
    return json_ok(result)


@routes.get('/financial/plans')
@require_role(SUPPLIER_ROLES)
@handle_errors
async def list_plans(request: web.Request) -> web.Response:
    plans = await get_engine(request).list_plans()
    return json_ok({"plans": plans})


@routes.post('/financial/internal/order-completed')
@require_role([Role.SYSTEM_ADMIN])
@handle_errors
async def order_completed(request: web.Request) -> web.Response:
    """
    Registra a venda de um pedido concluído (idempotente por pedido).

    Body:
        supplierId (int), orderId (str), grossAmount (number), completedAt (ISO, opcional)
    """
    data = await parse_json(request)
    supplier_id = parse_int(data.get("supplierId"), "supplierId")
    if supplier_id is None or not data.get("orderId") or data.get("grossAmount") is None:
        raise InvalidEntry("supplierId, orderId e grossAmount são obrigatórios")

    summary = await get_engine(request).record_sale(
        supplier_id,
        str(data["orderId"]),
        data["grossAmount"],
        parse_date(data.get("completedAt"), "completedAt")
    )
    return json_ok(summary, status=201 if summary["created"] else 200)


@routes.post('/financial/internal/order-refunded')
@require_role([Role.SYSTEM_ADMIN])
@handle_errors
async def order_refunded(request: web.Request) -> web.Response:
    data = await parse_json(request)
    if not data.get("orderId"):
        raise InvalidEntry("orderId é obrigatório")
    result = await get_engine(request).refund_sale(str(data["orderId"]), data.get("reason"))
    return json_ok(result)


@routes.post('/financial/cron/release')
@require_cron_secret
@handle_errors
async def cron_release(request: web.Request) -> web.Response:
    result = await get_engine(request).sweep_releases(
        batch_size=RELEASE_SWEEP_BATCH_SIZE,
        time_budget=RELEASE_SWEEP_TIME_BUDGET_SECONDS
    )
    return json_ok(result)


@routes.post('/financial/cron/check-overdue')
@require_cron_secret
@handle_errors
async def cron_check_overdue(request: web.Request) -> web.Response:
    result = await get_engine(request).check_overdue()
    return json_ok(result)
