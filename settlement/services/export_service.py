# D:\Settlement\settlement\services\export_service.py
"""
export_service.py

Módulo responsável pela exportação contábil do razão.

Funcionalidades principais:
    - Extrato detalhado dos lançamentos COMPLETED de um período, com nome e
      documento do fornecedor
    - Resumo contábil: total por tipo de lançamento e saldo disponível de cada fornecedor
    - Geração do arquivo CSV (extrato, linha em branco, resumo)

Regras de Negócio:
    - Apenas lançamentos COMPLETED entram na exportação (retidos, reservas de saque
      e estornos ficam de fora)
    - O período é obrigatório e inclusivo nas duas pontas
    - Fornecedor sem documento cadastrado aparece como "N/A"
    - Ajustes de estorno e de recebimento via gateway têm categoria própria no resumo

Dependências:
    - SQLAlchemy para as consultas
    - csv (biblioteca padrão) para o arquivo
    - settlement.services.ledger_service para o extrato de um único fornecedor
"""

import csv
import io
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.database import Supplier
from settlement.models.finance_models import (
    AdjustmentSource, LedgerEntry, LedgerEntryStatus, LedgerEntryType, SupplierBalance
)
from settlement.services.errors import InvalidEntry, NotFound
from settlement.services.ledger_service import list_for_supplier, to_money, ZERO

EXPORT_FORMATS = ("csv", "json")

LEDGER_HEADER = ["Data", "Fornecedor", "Documento", "Tipo", "Descricao", "Valor"]
SUMMARY_HEADER = ["Categoria", "Total"]

SUPPLIER_PAGE_SIZE = 500


def _category(entry: LedgerEntry) -> str:
    # Estornos e recebimentos do gateway não somam com as correções administrativas
    if entry.type == LedgerEntryType.ADJUSTMENT and entry.source not in (None, AdjustmentSource.ADMIN):
        return f"ADJUSTMENT ({entry.source.value})"
    return entry.type.value


def _row(entry: LedgerEntry, supplier: Supplier) -> Dict:
    return {
        "Categoria": _category(entry),
        "Data": entry.created_at.date().isoformat() if entry.created_at else "",
        "Fornecedor": supplier.name,
        "Documento": supplier.billing_doc or "N/A",
        "Tipo": entry.type.value,
        "Descricao": entry.description or "",
        "Valor": to_money(entry.amount),
    }


async def _supplier_entries(session: AsyncSession, supplier_id: int, start: datetime, end: datetime) -> List:
    """Percorre todas as páginas do extrato do fornecedor, da mais antiga à mais recente."""
    entries = []
    page = 1
    while True:
        batch, total = await list_for_supplier(
            session, supplier_id, status=LedgerEntryStatus.COMPLETED.value,
            start_date=start, end_date=end, page=page, page_size=SUPPLIER_PAGE_SIZE
        )
        entries.extend(batch)
        if not batch or len(entries) >= total:
            break
        page += 1
    entries.reverse()
    return entries


async def accounting_export(
    session: AsyncSession,
    start: Optional[datetime],
    end: Optional[datetime],
    supplier_id: Optional[int] = None
) -> Dict:
    """
    Monta a exportação contábil do período.

    Args:
        session (AsyncSession): Sessão do banco de dados
        start (datetime): Início do período
        end (datetime): Fim do período
        supplier_id (Optional[int]): Restringe a um fornecedor

    Returns:
        Dict: period, rows (extrato em ordem cronológica) e summary
            (totais por tipo seguidos dos saldos por fornecedor)

    Raises:
        InvalidEntry: Período ausente ou invertido
        NotFound: Fornecedor inexistente
    """
    if start is None or end is None:
        raise InvalidEntry("start_date e end_date são obrigatórios para a exportação")
    if start > end:
        raise InvalidEntry("start_date deve ser anterior a end_date")

    if supplier_id is not None:
        supplier = await session.get(Supplier, supplier_id)
        if not supplier:
            raise NotFound(f"Fornecedor {supplier_id} não encontrado")
        entries = await _supplier_entries(session, supplier_id, start, end)
        rows = [_row(entry, supplier) for entry in entries]
        suppliers = [supplier]
    else:
        result = await session.execute(
            select(LedgerEntry, Supplier)
            .join(Supplier, Supplier.id == LedgerEntry.supplier_id)
            .where(and_(
                LedgerEntry.status == LedgerEntryStatus.COMPLETED,
                LedgerEntry.created_at >= start,
                LedgerEntry.created_at <= end,
            ))
            .order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        )
        rows = [_row(entry, supplier) for entry, supplier in result.all()]
        suppliers_result = await session.execute(select(Supplier).order_by(Supplier.name, Supplier.id))
        suppliers = suppliers_result.scalars().all()

    totals: Dict[str, object] = {}
    for row in rows:
        totals[row["Categoria"]] = to_money(totals.get(row["Categoria"], ZERO) + row["Valor"])

    summary = [{"Categoria": entry_type, "Total": total} for entry_type, total in sorted(totals.items())]

    wallets_result = await session.execute(
        select(SupplierBalance.supplier_id, func.coalesce(SupplierBalance.wallet_balance, 0))
        .where(SupplierBalance.supplier_id.in_([s.id for s in suppliers]))
    )
    wallets = {supplier_id: to_money(wallet) for supplier_id, wallet in wallets_result.all()}
    balances = [
        {"Categoria": f"Saldo: {supplier.name}", "Total": wallets.get(supplier.id, ZERO)}
        for supplier in suppliers
    ]

    return {
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "rows": rows,
        "summary": summary,
        "balances": balances,
        "total": to_money(sum((row["Valor"] for row in rows), ZERO)),
    }


def to_csv(export: Dict) -> str:
    """
    Gera o CSV da exportação: extrato detalhado, uma linha em branco e o resumo contábil.
    """
    output = io.StringIO()
    writer = csv.writer(output)

    writer.writerow(LEDGER_HEADER)
    for row in export["rows"]:
        writer.writerow([f"{row[column]:.2f}" if column == "Valor" else row[column] for column in LEDGER_HEADER])

    writer.writerow([])
    writer.writerow(SUMMARY_HEADER)
    for item in export["summary"] + export["balances"]:
        writer.writerow([item["Categoria"], f"{item['Total']:.2f}"])

    return output.getvalue()
