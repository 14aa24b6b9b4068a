# D:\Settlement\settlement\views\bi_views.py
"""
bi_views.py

Endpoints de BI financeiro para o painel administrativo.

Endpoints:
    - GET /admin/bi/overview: Indicadores consolidados do período
    - GET /admin/bi/daily-revenue: Série diária de GMV, comissão e receita líquida
    - GET /admin/bi/suppliers: Indicadores por fornecedor
    - GET /admin/bi/anomalies: Anomalias detectadas pela auditoria

Regras de Negócio:
    - Restrito a SYSTEM_ADMIN
    - Períodos aceitos em daily-revenue: 7d, 30d e 90d
"""

from aiohttp import web

from settlement.middleware.authorization_middleware import require_role
from settlement.models.database import Role
from settlement.views.view_utils import get_engine, handle_errors, json_ok, parse_date, parse_int

routes = web.RouteTableDef()


@routes.get('/admin/bi/overview')
@require_role([Role.SYSTEM_ADMIN])
@handle_errors
async def bi_overview(request: web.Request) -> web.Response:
    data = await get_engine(request).overview(
        parse_date(request.query.get("start_date"), "start_date"),
        parse_date(request.query.get("end_date"), "end_date"),
        parse_int(request.query.get("supplierId"), "supplierId"),
    )
    return json_ok(data)


@routes.get('/admin/bi/daily-revenue')
@require_role([Role.SYSTEM_ADMIN])
@handle_errors
async def bi_daily_revenue(request: web.Request) -> web.Response:
    """
    Série diária de receita.

    Query params:
        period (str, opcional): 7d, 30d (padrão) ou 90d
        supplierId (int, opcional): Filtro por fornecedor
    """
    period = request.query.get("period", "30d")
    data = await get_engine(request).daily_revenue(
        period, parse_int(request.query.get("supplierId"), "supplierId")
    )
    return json_ok({"period": period, "data": data})


@routes.get('/admin/bi/suppliers')
@require_role([Role.SYSTEM_ADMIN])
@handle_errors
async def bi_suppliers(request: web.Request) -> web.Response:
    data = await get_engine(request).supplier_kpis(
        search=request.query.get("search"),
        status=request.query.get("status"),
    )
    return json_ok({"suppliers": data})


@routes.get('/admin/bi/anomalies')
@require_role([Role.SYSTEM_ADMIN])
@handle_errors
async def bi_anomalies(request: web.Request) -> web.Response:
    data = await get_engine(request).anomalies()
    return json_ok({"anomalies": data, "count": len(data)})
