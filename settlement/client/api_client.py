# D:\Settlement\settlement\client\api_client.py
"""
api_client.py

Cliente HTTP assíncrono para a API financeira, usado por painéis e integrações.

Classes:
    ApiError: Erro HTTP retornado pela API, com classificação de autenticação/permissão.
    FinancialApiClient: Cliente com token Bearer sobre aiohttp.ClientSession.

Regras de Negócio:
    - Falhas de transporte (timeout, conexão) são repetidas apenas em leituras (GET)
    - Chamadas que alteram estado enviam um Idempotency-Key e nunca são repetidas
    - Erros HTTP não são repetidos: viram ApiError com a mensagem do servidor
    - Token expirado (401/403 com marcador de expiração) é distinto de permissão negada
      (403 sem marcador), permitindo redirecionar ao login apenas no primeiro caso

Dependências:
    - aiohttp para as requisições
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)

TOKEN_EXPIRED_MARKERS = (
    "expired",
    "invalid token",
    "expirada",
    "token inválido",
    "jwt expired",
    "token expirado",
)

RETRYABLE_EXCEPTIONS = (aiohttp.ClientConnectionError, asyncio.TimeoutError)


class ApiError(Exception):
    """Erro HTTP da API financeira."""

    def __init__(self, status: int, message: str, code: Optional[str] = None, payload: Any = None):
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message or ""
        self.code = code
        self.payload = payload

    @property
    def is_token_expired(self) -> bool:
        """True para 401/403 cuja mensagem indica token expirado ou inválido."""
        if self.status not in (401, 403):
            return False
        message = self.message.lower()
        return any(marker in message for marker in TOKEN_EXPIRED_MARKERS)

    @property
    def is_permission_error(self) -> bool:
        """True para 403 que não seja expiração de token."""
        return self.status == 403 and not self.is_token_expired


class FinancialApiClient:
    """
    Cliente da API financeira.

    Exemplo:
        async with FinancialApiClient("http://localhost:8000", token) as client:
            data = await client.get_supplier_financials(1)
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None,
        max_retries: int = 3,
        backoff: float = 0.5,
        timeout: float = 10
    ):
        """
        Args:
            base_url (str): URL base da API.
            token (Optional[str]): Token JWT de acesso.
            session (Optional[aiohttp.ClientSession]): Sessão HTTP externa (não é fechada pelo cliente).
            max_retries (int): Tentativas extras para leituras com falha de transporte.
            backoff (float): Espera inicial entre tentativas, dobrada a cada repetição.
            timeout (float): Tempo limite de cada requisição, em segundos.
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.max_retries = max_retries
        self.backoff = backoff
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    @staticmethod
    async def _parse_response(response: aiohttp.ClientResponse) -> Any:
        try:
            data = await response.json(content_type=None)
        except ValueError:
            data = {"error": await response.text()}

        if response.status >= 400:
            message = ""
            code = None
            if isinstance(data, dict):
                message = data.get("error") or data.get("message") or ""
                code = data.get("code")
            raise ApiError(response.status, str(message), code, data)
        return data

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict] = None,
        json: Optional[Dict] = None,
        idempotency_key: Optional[str] = None
    ) -> Any:
        """
        Executa uma requisição e devolve o corpo JSON.

        Raises:
            ApiError: Resposta HTTP com status >= 400
            aiohttp.ClientError / asyncio.TimeoutError: Falha de transporte persistente
        """
        method = method.upper()
        if method != "GET" and idempotency_key is None:
            idempotency_key = str(uuid.uuid4())
        attempts = 1 + (self.max_retries if method == "GET" else 0)

        for attempt in range(1, attempts + 1):
            try:
                async with self._get_session().request(
                    method,
                    self._url(path),
                    params=params,
                    json=json,
                    headers=self._headers(idempotency_key if method != "GET" else None)
                ) as response:
                    return await self._parse_response(response)
            except RETRYABLE_EXCEPTIONS as e:
                if attempt >= attempts:
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Falha de transporte em %s %s (tentativa %s/%s): %s",
                    method, path, attempt, attempts, e
                )
                await asyncio.sleep(delay)

    # ---------- Fornecedor ----------

    async def get_supplier_financials(self, supplier_id: int) -> Dict:
        return await self.request("GET", f"/financial/supplier/{supplier_id}")

    async def get_ledger(self, supplier_id: Optional[int] = None, **filters) -> Dict:
        params = {key: value for key, value in filters.items() if value is not None}
        if supplier_id is not None:
            params["supplierId"] = supplier_id
        return await self.request("GET", "/financial/ledger", params=params)

    async def request_withdrawal(
        self,
        supplier_id: int,
        amount: float,
        pix_key: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Dict:
        body = {"supplierId": supplier_id, "amount": amount}
        if pix_key:
            body["pixKey"] = pix_key
        return await self.request("POST", "/financial/withdraw", json=body, idempotency_key=idempotency_key)

    async def pay_subscription(
        self,
        supplier_id: int,
        method: str,
        amount: Optional[float] = None,
        payment_token: Optional[str] = None,
        gateway: Optional[str] = None
    ) -> Dict:
        body = {"supplierId": supplier_id, "method": method}
        if amount is not None:
            body["amount"] = amount
        if payment_token:
            body["paymentToken"] = payment_token
        if gateway:
            body["gateway"] = gateway
        return await self.request("POST", "/financial/subscription/pay", json=body)

    async def change_plan(self, supplier_id: int, plan_id: int) -> Dict:
        return await self.request(
            "POST", "/financial/subscription/change-plan",
            json={"supplierId": supplier_id, "planId": plan_id}
        )

    async def update_billing_info(self, supplier_id: int, **fields) -> Dict:
        return await self.request("POST", "/financial/billing-info", json={"supplierId": supplier_id, **fields})

    async def list_plans(self) -> Dict:
        return await self.request("GET", "/financial/plans")

    # ---------- Administração ----------

    async def admin_dashboard(self, **filters) -> Dict:
        return await self.request("GET", "/financial/admin/dashboard", params=filters or None)

    async def list_withdrawals(self, status: Optional[str] = None, **filters) -> Dict:
        params = dict(filters)
        if status:
            params["status"] = status
        return await self.request("GET", "/financial/admin/withdrawals", params=params or None)

    async def approve_withdrawal(self, request_id: int) -> Dict:
        return await self.request("POST", f"/financial/admin/withdrawals/{request_id}/approve", json={})

    async def reject_withdrawal(self, request_id: int, reason: str) -> Dict:
        return await self.request(
            "POST", f"/financial/admin/withdrawals/{request_id}/reject", json={"reason": reason}
        )

    async def get_settings(self) -> Dict:
        return await self.request("GET", "/financial/admin/settings")

    async def update_settings(self, **fields) -> Dict:
        return await self.request("PUT", "/financial/admin/settings", json=fields)

    async def reconciliation(self, **filters) -> Dict:
        return await self.request("GET", "/financial-admin/reconciliation", params=filters or None)

    async def alerts(self) -> Dict:
        return await self.request("GET", "/financial-admin/alerts")

    async def daily_revenue(self, period: str = "30d") -> Dict:
        return await self.request("GET", "/admin/bi/daily-revenue", params={"period": period})
