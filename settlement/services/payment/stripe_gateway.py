# D:\Settlement\settlement\services\payment\stripe_gateway.py
"""
stripe_gateway.py

Implementação da interface de gateway de pagamento para o Stripe, usada na
cobrança de assinaturas com cartão tokenizado.

Classes:
    StripeGateway: Implementação do gateway de pagamento Stripe.
"""

import json
import stripe
from decimal import Decimal
from typing import Dict, Optional, Tuple, Any
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.finance_models import PaymentGatewayConfig

from .gateway_interface import PaymentGatewayInterface


class StripeGateway(PaymentGatewayInterface):
    """
    Implementação específica do gateway de pagamento Stripe.
    """

    GATEWAY_NAME = "stripe"

    async def get_gateway_config(self, session: AsyncSession) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """
        Obtém a configuração do Stripe do banco de dados.

        O segredo (api_secret) é a chave usada pelo SDK.

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
                "api_key": config.api_secret or config.api_key,
                "configuration": json.loads(config.configuration) if config.configuration else {}
            }
        except Exception as e:
            return False, f"Erro ao obter configuração do {self.GATEWAY_NAME}: {str(e)}", None

    async def initialize_client(self, session: AsyncSession) -> Tuple[bool, Optional[str], Optional[Any]]:
        """
        Inicializa o cliente Stripe com as credenciais configuradas.

        Returns:
            Tuple[bool, Optional[str], Optional[stripe]]: Sucesso, erro e módulo configurado
        """
        try:
            success, error, config = await self.get_gateway_config(session)
            if not success:
                return False, error, None

            stripe.api_key = config["api_key"]
            return True, None, stripe
        except Exception as e:
            return False, f"Erro ao inicializar Stripe: {str(e)}", None

    async def charge_token(
        self,
        session: AsyncSession,
        amount: Decimal,
        payment_token: str,
        description: str,
        metadata: Dict
    ) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """
        Cobra um token de cartão (tok_...) no Stripe.

        Args:
            session (AsyncSession): Sessão do banco de dados
            amount (Decimal): Valor em reais
            payment_token (str): Token emitido pelo Stripe.js
            description (str): Descrição da cobrança
            metadata (Dict): Metadados da cobrança

        Returns:
            Tuple[bool, Optional[str], Optional[Dict]]:
                - Sucesso da cobrança
                - Mensagem de erro (se houver)
                - gateway_transaction_id e status (se sucesso)
        """
        success, error, stripe_client = await self.initialize_client(session)
        if not success:
            return False, error, None

        # Stripe trabalha na menor unidade da moeda
        amount_cents = int((Decimal(amount) * 100).to_integral_value())

        try:
            charge = stripe_client.Charge.create(
                amount=amount_cents,
                currency="brl",
                source=payment_token,
                description=description,
                metadata={key: str(value) for key, value in metadata.items()},
                receipt_email=metadata.get("email")
            )
        except stripe.StripeError as e:
            return False, f"Cobrança recusada pelo Stripe: {str(e)}", None

        if charge["status"] != "succeeded":
            return False, f"Cobrança não aprovada pelo Stripe ({charge['status']})", None

        return True, None, {
            "gateway_transaction_id": charge["id"],
            "status": "approved"
        }
