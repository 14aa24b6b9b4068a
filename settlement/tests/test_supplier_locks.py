"""
test_supplier_locks.py

Testes do registro de locks por fornecedor e dos eventos de auditoria financeira.
"""

import asyncio
import json
import logging

import pytest

from settlement.services.audit_service import FINANCIAL_EVENTS, log_financial_event
from settlement.services.supplier_locks import SupplierLockRegistry


@pytest.mark.asyncio
async def test_lock_serializes_same_supplier_and_is_discarded():
    registry = SupplierLockRegistry()
    order = []

    async def operation(name):
        async with registry.hold(1):
            order.append(f"{name}-início")
            await asyncio.sleep(0)
            order.append(f"{name}-fim")

    await asyncio.gather(operation("a"), operation("b"), operation("c"))

    assert order == ["a-início", "a-fim", "b-início", "b-fim", "c-início", "c-fim"]
    # Sem operações em andamento, o registro fica vazio
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_lock_kept_while_someone_waits():
    registry = SupplierLockRegistry()
    release_first = asyncio.Event()
    sizes = []

    async def first():
        async with registry.hold(7):
            await release_first.wait()

    async def second():
        async with registry.hold(7):
            sizes.append(len(registry))

    task_first = asyncio.create_task(first())
    await asyncio.sleep(0)
    task_second = asyncio.create_task(second())
    await asyncio.sleep(0)

    assert len(registry) == 1
    release_first.set()
    await asyncio.gather(task_first, task_second)

    # O segundo ainda encontrou o mesmo lock registrado
    assert sizes == [1]
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_different_suppliers_run_in_parallel():
    registry = SupplierLockRegistry()
    both_inside = asyncio.Event()
    inside = set()

    async def operation(supplier_id):
        async with registry.hold(supplier_id):
            inside.add(supplier_id)
            if len(inside) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(operation(1), operation(2))
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_lock_released_on_error():
    registry = SupplierLockRegistry()

    with pytest.raises(RuntimeError):
        async with registry.hold(3):
            raise RuntimeError("falha no meio da operação")

    assert len(registry) == 0
    async with registry.hold(3):
        assert len(registry) == 1


def test_financial_event_is_json_line(caplog):
    caplog.set_level(logging.INFO, logger="settlement.financial_audit")

    log_financial_event("WITHDRAWAL_REQUESTED", 5, amount="100.00", request_id=9)

    event = json.loads(caplog.records[-1].getMessage())
    assert event["type"] == "WITHDRAWAL_REQUESTED"
    assert event["supplier_id"] == 5
    assert event["data"] == {"amount": "100.00", "request_id": 9}


def test_unknown_financial_event_is_rejected():
    assert "LEDGER_ENTRY_CREATED" in FINANCIAL_EVENTS

    with pytest.raises(ValueError):
        log_financial_event("SALDO_MAGICO", 1)
