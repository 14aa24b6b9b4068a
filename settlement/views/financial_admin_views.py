# D:\Settlement\settlement\views\financial_admin_views.py
"""
financial_admin_views.py

Módulo responsável pelos endpoints administrativos do motor de liquidação:
painel, saques, configurações, auditoria, ajustes, planos e conciliação.

Endpoints:
    - GET /financial/admin/dashboard | /financial-admin/overview: Visão geral
    - GET /financial/admin/withdrawals?status=: Lista solicitações de saque
    - POST /financial/admin/withdrawals/{id}/approve: Aprova (paga) um saque
    - POST /financial/admin/withdrawals/{id}/reject: Rejeita um saque
    - GET | PUT /financial/admin/settings: Configurações financeiras globais
    - GET /financial/admin/audit: Log de ações administrativas
    - POST /financial/admin/adjustments: Ajuste manual no razão
    - POST /financial/admin/plans: Cria um plano
    - GET /financial-admin/reconciliation: Relatório de conciliação
    - GET /financial-admin/suppliers: Indicadores por fornecedor
    - GET /financial-admin/alerts: Anomalias financeiras e de permissão
    - GET /financial/admin/export: Exportação contábil (CSV ou JSON)

Regras de Negócio:
    - Todas as rotas são restritas a SYSTEM_ADMIN
    - Rejeições exigem motivo; toda ação administrativa gera registro de auditoria
    - Anomalias são apenas reportadas, nunca corrigidas automaticamente

Dependências:
    - aiohttp para rotas
    - settlement.services.settlement_engine para a lógica financeira
    - settlement.middleware.authorization_middleware para autenticação
"""

from aiohttp import web

from settlement.middleware.authorization_middleware import require_role
from settlement.models.database import Role
from settlement.services.errors import InvalidEntry
from settlement.services.export_service import EXPORT_FORMATS, to_csv
from settlement.views.view_utils import (
    get_engine, handle_errors, json_ok, parse_date, parse_int, parse_json
)

routes = web.RouteTableDef()

ADMIN_ROLES = [Role.SYSTEM_ADMIN]

SETTINGS_BODY_FIELDS = {
    "defaultReleaseDays": "default_release_days",
    "defaultMinWithdrawal": "default_min_withdrawal",
    "defaultWithdrawalLimit": "default_withdrawal_limit",
    "defaultCommissionPercent": "default_commission_percent",
    "withdrawalSlaDays": "withdrawal_sla_days",
}

PLAN_BODY_FIELDS = {
    "name": "name",
    "monthlyPrice": "monthly_price",
    "cycleDays": "cycle_days",
    "commissionPercent": "commission_percent",
    "releaseDays": "release_days",
    "minWithdrawal": "min_withdrawal",
    "withdrawalLimit": "withdrawal_limit",
}


def _map_fields(data: dict, mapping: dict) -> dict:
    """Aceita tanto as chaves camelCase quanto as snake_case do corpo."""
    fields = {}
    for camel, snake in mapping.items():
        if camel in data:
            fields[snake] = data[camel]
        elif snake in data:
            fields[snake] = data[snake]
    return fields


def _period_filters(request: web.Request):
    return (
        parse_date(request.query.get("start_date"), "start_date"),
        parse_date(request.query.get("end_date"), "end_date"),
        parse_int(request.query.get("supplierId"), "supplierId"),
    )


@routes.get('/financial/admin/dashboard')
@require_role(ADMIN_ROLES)
@handle_errors
async def admin_dashboard(request: web.Request) -> web.Response:
    """
    Painel administrativo: visão geral do período e saques pendentes recentes.

    Query params:
        start_date / end_date (str, opcional): Período (ISO)
        supplierId (int, opcional): Filtro por fornecedor
    """
    start, end, supplier_id = _period_filters(request)
    data = await get_engine(request).admin_dashboard(start, end, supplier_id)
    return json_ok(data)


@routes.get('/financial-admin/overview')
@require_role(ADMIN_ROLES)
@handle_errors
async def financial_overview(request: web.Request) -> web.Response:
    start, end, supplier_id = _period_filters(request)
    data = await get_engine(request).overview(start, end, supplier_id)
    return json_ok(data)


@routes.get('/financial/admin/withdrawals')
@require_role(ADMIN_ROLES)
@handle_errors
async def list_withdrawals(request: web.Request) -> web.Response:
    """
    Lista solicitações de saque.

    Query params:
        status (str, opcional): PENDING, PAID, REJECTED, HISTORY ou ALL (padrão)
        supplierId (int, opcional), start_date / end_date (ISO), page, page_size
    """
    start, end, supplier_id = _period_filters(request)
    data = await get_engine(request).list_withdrawals(
        status=request.query.get("status"),
        supplier_id=supplier_id,
        start_date=start,
        end_date=end,
        page=parse_int(request.query.get("page"), "page", 1, minimum=1),
        page_size=parse_int(request.query.get("page_size"), "page_size", 20, minimum=1),
    )
    return json_ok(data)


@routes.post('/financial/admin/withdrawals/{request_id}/approve')
@require_role(ADMIN_ROLES)
@handle_errors
async def approve_withdrawal(request: web.Request) -> web.Response:
    """
    Aprova um saque pendente: o PAYOUT reservado é efetivado e o bloqueio liberado.
    """
    request_id = parse_int(request.match_info["request_id"], "request_id")
    result = await get_engine(request).approve_withdrawal(request_id, request["user"])
    return json_ok({"message": "Saque aprovado", "withdrawal": result})


@routes.post('/financial/admin/withdrawals/{request_id}/reject')
@require_role(ADMIN_ROLES)
@handle_errors
async def reject_withdrawal(request: web.Request) -> web.Response:
    """
    Rejeita um saque pendente e devolve o valor ao saldo disponível.

    Body:
        reason (str): Motivo da rejeição (obrigatório)
    """
    request_id = parse_int(request.match_info["request_id"], "request_id")
    data = await parse_json(request)
    result = await get_engine(request).reject_withdrawal(request_id, data.get("reason"), request["user"])
    return json_ok({"message": "Saque rejeitado", "withdrawal": result})


@routes.get('/financial/admin/settings')
@require_role(ADMIN_ROLES)
@handle_errors
async def get_settings(request: web.Request) -> web.Response:
    return json_ok(await get_engine(request).get_settings())


@routes.put('/financial/admin/settings')
@require_role(ADMIN_ROLES)
@handle_errors
async def update_settings(request: web.Request) -> web.Response:
    data = await parse_json(request)
    fields = _map_fields(data, SETTINGS_BODY_FIELDS)
    if not fields:
        raise InvalidEntry("Nenhuma configuração informada")
    result = await get_engine(request).update_settings(fields, request["user"])
    return json_ok(result)


@routes.get('/financial/admin/audit')
@require_role(ADMIN_ROLES)
@handle_errors
async def audit_logs(request: web.Request) -> web.Response:
    """
    Lista o log de ações administrativas, mais recentes primeiro.

    Query params:
        action (str, opcional), start_date / end_date (ISO), page, page_size
    """
    data = await get_engine(request).audit_logs(
        action=request.query.get("action"),
        start_date=parse_date(request.query.get("start_date"), "start_date"),
        end_date=parse_date(request.query.get("end_date"), "end_date"),
        page=parse_int(request.query.get("page"), "page", 1, minimum=1),
        page_size=parse_int(request.query.get("page_size"), "page_size", 50, minimum=1),
    )
    return json_ok(data)


@routes.post('/financial/admin/adjustments')
@require_role(ADMIN_ROLES)
@handle_errors
async def post_adjustment(request: web.Request) -> web.Response:
    """
    Lança um ajuste manual (positivo ou negativo) no saldo disponível do fornecedor.

    Body:
        supplierId (int), amount (number, diferente de zero), description (str)
    """
    data = await parse_json(request)
    supplier_id = parse_int(data.get("supplierId"), "supplierId")
    if supplier_id is None or data.get("amount") is None:
        raise InvalidEntry("supplierId e amount são obrigatórios")
    if not (data.get("description") or "").strip():
        raise InvalidEntry("description é obrigatória para ajustes")
    entry = await get_engine(request).post_adjustment(
        supplier_id, data["amount"], data["description"].strip(), request["user"]
    )
    return json_ok({"message": "Ajuste registrado", "entry": entry}, status=201)


@routes.post('/financial/admin/plans')
@require_role(ADMIN_ROLES)
@handle_errors
async def create_plan(request: web.Request) -> web.Response:
    data = await parse_json(request)
    plan = await get_engine(request).create_plan(_map_fields(data, PLAN_BODY_FIELDS), request["user"])
    return json_ok({"message": "Plano criado", "plan": plan}, status=201)


@routes.get('/financial-admin/reconciliation')
@require_role(ADMIN_ROLES)
@handle_errors
async def reconciliation(request: web.Request) -> web.Response:
    """
    Relatório de conciliação entre saldos e razão.

    Query params:
        supplierId (int, opcional), start_date / end_date (ISO) para a atividade do período
    """
    start, end, supplier_id = _period_filters(request)
    data = await get_engine(request).reconciliation(supplier_id, start, end)
    return json_ok(data)


@routes.get('/financial-admin/suppliers')
@require_role(ADMIN_ROLES)
@handle_errors
async def supplier_kpis(request: web.Request) -> web.Response:
    data = await get_engine(request).supplier_kpis(
        supplier_id=parse_int(request.query.get("supplierId"), "supplierId"),
        search=request.query.get("search"),
        status=request.query.get("status"),
    )
    return json_ok({"suppliers": data})


@routes.get('/financial-admin/alerts')
@require_role(ADMIN_ROLES)
@handle_errors
async def alerts(request: web.Request) -> web.Response:
    data = await get_engine(request).anomalies()
    return json_ok({"alerts": data, "count": len(data)})


@routes.get('/financial/admin/export')
@require_role(ADMIN_ROLES)
@handle_errors
async def accounting_export(request: web.Request) -> web.Response:
    """
    Exportação contábil dos lançamentos COMPLETED do período.

    Query params:
        start_date / end_date (str): Período (ISO), obrigatórios
        supplierId (int, opcional): Restringe a um fornecedor
        format (str, opcional): csv (padrão) ou json

    Returns:
        web.Response: Arquivo CSV para download ou JSON com rows, summary e balances
    """
    output_format = (request.query.get("format") or "csv").lower()
    if output_format not in EXPORT_FORMATS:
        raise InvalidEntry(f"Formato de exportação inválido. Use: {', '.join(EXPORT_FORMATS)}")

    start, end, supplier_id = _period_filters(request)
    data = await get_engine(request).accounting_export(start, end, supplier_id)

    if output_format == "json":
        return json_ok(data)

    filename = f"contabil-{start.strftime('%Y%m%d')}-{end.strftime('%Y%m%d')}.csv"
    return web.Response(
        text=to_csv(data),
        content_type='text/csv',
        headers={
            'Content-Disposition': f'attachment; filename="{filename}"'
        }
    )
