# D:\Settlement\settlement\workers\release_worker.py
"""
release_worker.py

Worker em segundo plano que executa periodicamente a varredura de liberação de
saldos (D+N) e a verificação de assinaturas vencidas.

Funções:
    run_release_cycle(engine) -> dict:
        Executa uma rodada: varredura de liberação seguida da checagem de vencidos.
    release_worker(engine, interval) -> None:
        Laço infinito que chama run_release_cycle a cada `interval` segundos.
    release_worker_ctx(app):
        Contexto de ciclo de vida (cleanup_ctx) que inicia e cancela o worker.

Regras de Negócio:
    - Uma rodada com falha é registrada e nunca encerra o worker
    - A varredura é idempotente: rodadas repetidas não liberam valores em dobro
"""

import asyncio
import contextlib
import logging

from settlement.config.settings import (
    RELEASE_SWEEP_BATCH_SIZE,
    RELEASE_SWEEP_INTERVAL_SECONDS,
    RELEASE_SWEEP_TIME_BUDGET_SECONDS,
    SETTLEMENT_ENGINE_KEY,
)

logger = logging.getLogger(__name__)


async def run_release_cycle(engine) -> dict:
    release = await engine.sweep_releases(
        batch_size=RELEASE_SWEEP_BATCH_SIZE,
        time_budget=RELEASE_SWEEP_TIME_BUDGET_SECONDS
    )
    overdue = await engine.check_overdue()
    return {"release": release, "overdue": overdue}


async def release_worker(engine, interval: float = RELEASE_SWEEP_INTERVAL_SECONDS) -> None:
    while True:
        try:
            await run_release_cycle(engine)
        except asyncio.CancelledError:
            raise
        except Exception:
            # Nunca derruba o worker por uma rodada com problema
            logger.exception("RELEASE_WORKER_ERROR")
        await asyncio.sleep(interval)


async def release_worker_ctx(app):
    """
    Contexto de ciclo de vida da aplicação AIOHTTP (app.cleanup_ctx).

    Inicia o worker na subida da aplicação e o cancela no encerramento.
    """
    task = asyncio.create_task(release_worker(app[SETTLEMENT_ENGINE_KEY]))
    logger.info("Worker de liberação iniciado (intervalo de %ss)", RELEASE_SWEEP_INTERVAL_SECONDS)
    yield
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
    logger.info("Worker de liberação encerrado")
