# D:\Settlement\settlement\services\payment\gateway_interface.py

"""
gateway_interface.py

Módulo que define a interface base para todos os gateways de pagamento usados na
cobrança de assinaturas. O motor de liquidação só precisa de uma operação externa:
cobrar um token de cartão emitido pelo provedor (o cartão nunca chega ao servidor).

Classes:
    PaymentGatewayInterface: Interface abstrata base para gateways de pagamento.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Optional, Tuple, Any
from sqlalchemy.ext.asyncio import AsyncSession


class PaymentGatewayInterface(ABC):
    """
    Interface abstrata base para implementações de gateway de pagamento.

    Cada gateway (Stripe, Mercado Pago, etc.) implementa esta interface e devolve
    sempre a tupla (sucesso, mensagem de erro, dados).
    """

    GATEWAY_NAME = ""

    @abstractmethod
    async def get_gateway_config(
        self,
        session: AsyncSession
    ) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """
        Obtém as configurações do gateway armazenadas no banco de dados.

        Args:
            session (AsyncSession): Sessão do banco de dados.

        Returns:
            Tuple[bool, Optional[str], Optional[Dict]]:
                - Sucesso da operação (bool)
                - Mensagem de erro, se houver (str ou None)
                - Configurações do gateway (Dict ou None)
        """
        pass

    @abstractmethod
    async def initialize_client(self, session: AsyncSession) -> Tuple[bool, Optional[str], Optional[Any]]:
        """
        Inicializa o cliente do gateway com as credenciais configuradas.

        Args:
            session (AsyncSession): Sessão do banco de dados para obter configurações.

        Returns:
            Tuple[bool, Optional[str], Optional[Any]]:
                - Sucesso da operação (bool)
                - Mensagem de erro, se houver (str ou None)
                - Cliente inicializado (Any ou None)
        """
        pass

    @abstractmethod
    async def charge_token(
        self,
        session: AsyncSession,
        amount: Decimal,
        payment_token: str,
        description: str,
        metadata: Dict
    ) -> Tuple[bool, Optional[str], Optional[Dict]]:
        """
        Cobra um token de pagamento emitido pelo provedor.

        Args:
            session (AsyncSession): Sessão do banco de dados.
            amount (Decimal): Valor a cobrar.
            payment_token (str): Token do cartão emitido pelo provedor.
            description (str): Descrição da cobrança.
            metadata (Dict): Metadados (fornecedor, plano, e-mail de cobrança).

        Returns:
            Tuple[bool, Optional[str], Optional[Dict]]:
                - Sucesso da cobrança (bool)
                - Mensagem de erro, se houver (str ou None)
                - Dados da cobrança: gateway_transaction_id e status (Dict ou None)
        """
        pass
