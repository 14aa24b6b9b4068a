# D:\Settlement\settlement\services\payment\mercadopago_gateway.py

"""
mercadopago_gateway.py

Implementação da interface de gateway de pagamento para o Mercado Pago, usada na
cobrança de assinaturas com cartão tokenizado.

Classes:
    MercadoPagoGateway: Implementação do gateway de pagamento Mercado Pago.
"""

import json
import mercadopago
from decimal import Decimal
from typing import Dict, Optional, Tuple, Any
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.finance_models import PaymentGatewayConfig

from .gateway_interface import PaymentGatewayInterface


class MercadoPagoGateway(PaymentGatewayInterface):
    """
    Implementação específica do gateway de pagamento Mercado Pago.
    """

    GATEWAY_NAME = "mercado_pago"

    async def get_gateway_config(self, session: AsyncSession) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """
        Obtém a configuração do Mercado Pago do banco de dados.

        Args:
            session (AsyncSession): Sessão do banco de dados

        Returns:
            Tuple[bool, Optional[str], Optional[Dict]]:
                - Sucesso da operação
                - Mensagem de erro (se houver)
                - Configurações do gateway (se sucesso)
        """
        try:
            result = await session.execute(
                select(PaymentGatewayConfig)
                .where(
                    and_(
                        PaymentGatewayConfig.gateway_name == self.GATEWAY_NAME,
                        PaymentGatewayConfig.is_active == True  # noqa: E712
                    )
                )
            )
            config = result.scalars().first()

            if not config:
                return False, f"Configuração do {self.GATEWAY_NAME} não encontrada", None

            return True, None, {
                "id": config.id,
                "api_key": config.api_key,
                "access_token": config.api_secret or config.api_key,
                "configuration": json.loads(config.configuration) if config.configuration else {}
            }
        except Exception as e:
            return False, f"Erro ao obter configuração do {self.GATEWAY_NAME}: {str(e)}", None

    async def initialize_client(self, session: AsyncSession) -> Tuple[bool, Optional[str], Optional[Any]]:
        """
        Inicializa o SDK do Mercado Pago com o access token configurado.

        Returns:
            Tuple[bool, Optional[str], Optional[Dict]]: Sucesso, erro e {"sdk": SDK}
        """
        try:
            success, error, config = await self.get_gateway_config(session)
            if not success:
                return False, error, None

            mp_sdk = mercadopago.SDK(config["access_token"])
            return True, None, {"sdk": mp_sdk}
        except Exception as e:
            return False, f"Erro ao inicializar Mercado Pago: {str(e)}", None

    async def charge_token(
        self,
        session: AsyncSession,
        amount: Decimal,
        payment_token: str,
        description: str,
        metadata: Dict
    ) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """
        Cobra um token de cartão no Mercado Pago (pagamento à vista).

        Args:
            session (AsyncSession): Sessão do banco de dados
            amount (Decimal): Valor em reais
            payment_token (str): Token emitido pelo SDK de front-end
            description (str): Descrição da cobrança
            metadata (Dict): Metadados (email do pagador incluso)

        Returns:
            Tuple[bool, Optional[str], Optional[Dict]]:
                - Sucesso da cobrança
                - Mensagem de erro (se houver)
                - gateway_transaction_id e status (se sucesso)
        """
        success, error, client = await self.initialize_client(session)
        if not success:
            return False, error, None

        payment_data = {
            "transaction_amount": float(amount),
            "token": payment_token,
            "description": description,
            "installments": 1,
            "payer": {"email": metadata.get("email") or "sem-email@fornecedor.local"},
            "metadata": metadata,
        }

        try:
            payment_response = client["sdk"].payment().create(payment_data)
        except Exception as e:
            return False, f"Erro ao cobrar no Mercado Pago: {str(e)}", None

        payment_result = payment_response.get("response") or {}
        if payment_response.get("status", 500) >= 300:
            return False, f"Erro ao processar pagamento: {payment_result.get('message')}", None
        if payment_result.get("status") != "approved":
            return False, f"Pagamento não aprovado ({payment_result.get('status_detail')})", None

        return True, None, {
            "gateway_transaction_id": str(payment_result["id"]),
            "status": "approved"
        }
