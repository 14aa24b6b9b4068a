# D:\Settlement\settlement\services\payment\gateway_factory.py

"""
gateway_factory.py

Registro dos gateways usados para cobrar assinaturas de fornecedores com cartão.

Classes:
    PaymentGatewayFactory: Resolve o nome informado pelo cliente para uma instância de gateway.

Functions:
    normalize_gateway_name(gateway_name) -> str:
        Converte apelidos ("MercadoPago", "mercado-pago") no nome canônico; vazio vira o padrão.

Regras de Negócio:
    - Sem gateway informado, a cobrança usa DEFAULT_GATEWAY
    - O nome canônico é o que fica gravado em PaymentTransaction.gateway
"""

from typing import Dict

from .gateway_interface import PaymentGatewayInterface
from .stripe_gateway import StripeGateway
from .mercadopago_gateway import MercadoPagoGateway

DEFAULT_GATEWAY = "stripe"

GATEWAY_ALIASES = {
    "mercadopago": "mercado_pago",
    "mercado-pago": "mercado_pago",
    "mp": "mercado_pago",
}


def normalize_gateway_name(gateway_name) -> str:
    if not gateway_name or not str(gateway_name).strip():
        return DEFAULT_GATEWAY
    name = str(gateway_name).strip().lower()
    return GATEWAY_ALIASES.get(name, name)


class PaymentGatewayFactory:
    """
    Factory de gateways de cobrança.

    O motor de liquidação recebe a factory no construtor, o que permite trocá-la
    por uma versão com mocks nos testes.
    """

    _GATEWAYS = {
        StripeGateway.GATEWAY_NAME: StripeGateway,
        MercadoPagoGateway.GATEWAY_NAME: MercadoPagoGateway,
    }

    @classmethod
    def get_gateway(cls, gateway_name: str = None) -> PaymentGatewayInterface:
        """
        Retorna uma instância do gateway solicitado.

        Args:
            gateway_name (str): Nome ou apelido do gateway; vazio usa DEFAULT_GATEWAY.

        Returns:
            PaymentGatewayInterface: Instância do gateway

        Raises:
            ValueError: Se o gateway solicitado não estiver registrado.
        """
        gateway_class = cls._GATEWAYS.get(normalize_gateway_name(gateway_name))
        if not gateway_class:
            raise ValueError(f"Gateway não suportado: {gateway_name}")
        return gateway_class()

    @classmethod
    def is_supported(cls, gateway_name: str) -> bool:
        return normalize_gateway_name(gateway_name) in cls._GATEWAYS

    @classmethod
    def register_gateway(cls, gateway_name: str, gateway_class: type) -> None:
        """
        Registra um gateway adicional.

        Raises:
            TypeError: Se a classe não implementar PaymentGatewayInterface.
        """
        if not issubclass(gateway_class, PaymentGatewayInterface):
            raise TypeError(
                f"A classe {gateway_class.__name__} deve implementar PaymentGatewayInterface"
            )
        cls._GATEWAYS[normalize_gateway_name(gateway_name)] = gateway_class

    @classmethod
    def get_supported_gateways(cls) -> Dict[str, type]:
        """Cópia do registro: nome canônico -> classe."""
        return dict(cls._GATEWAYS)
