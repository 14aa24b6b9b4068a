# D:\Settlement\settlement\services\supplier_locks.py
"""
supplier_locks.py

Ponto de serialização por fornecedor. Todas as operações que alteram o razão de um
fornecedor (venda, estorno, ajuste, liberação, saque, assinatura) executam dentro
do lock desse fornecedor; fornecedores diferentes seguem em paralelo.

Classes:
    SupplierLockRegistry: Registro de asyncio.Lock por fornecedor.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class SupplierLockRegistry:
    """
    Mantém um asyncio.Lock por fornecedor enquanto houver operações em andamento.

    O lock é criado na primeira operação e descartado quando a última que o
    detinha (ou aguardava) termina, então o registro só guarda fornecedores ativos.
    Os locks valem dentro de um processo; entre processos a linha do saldo
    materializado é bloqueada com SELECT ... FOR UPDATE.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, supplier_id: int):
        lock = self._locks.get(supplier_id)
        if lock is None:
            lock = self._locks[supplier_id] = asyncio.Lock()
        # Conta quem detém ou aguarda o lock; sem await entre a busca e a contagem
        self._users[supplier_id] = self._users.get(supplier_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[supplier_id] -= 1
            if self._users[supplier_id] == 0:
                del self._users[supplier_id]
                del self._locks[supplier_id]

    def __len__(self) -> int:
        return len(self._locks)
