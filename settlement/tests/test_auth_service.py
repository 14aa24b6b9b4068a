# D:\Settlement\settlement\tests\test_auth_service.py

"""
test_auth_service.py

Este módulo contém os testes do AuthService: emissão e validação de tokens JWT,
normalização de papéis e regras de acesso aos dados financeiros de um fornecedor.

Functions:
    test_jwt_generation_and_verification: Token válido carrega id, papel e conta.
    test_expired_token: Token expirado é rejeitado.
    test_invalid_token: Token adulterado é rejeitado.
    test_normalize_role: Papel legado 'ADMIN' vira SYSTEM_ADMIN.
    test_supplier_access_rules: SUPPLIER, ACCOUNT_ADMIN e SYSTEM_ADMIN.
"""

import pytest

from settlement.models.database import Role
from settlement.services.auth_service import AuthService
from settlement.services.errors import NotFound, PermissionDenied
from settlement.tests.utils.auth_utils import create_user, make_token
from settlement.tests.utils.financial_utils import create_supplier


def test_jwt_generation_and_verification():
    """
    Testa a geração e verificação de tokens JWT.

    Asserts:
        O payload contém o id (sub), o papel e a conta do usuário.
    """
    token = make_token(7, Role.ACCOUNT_ADMIN, account_id=3, name="Ana")
    payload = AuthService.verify_jwt_token(token)

    assert payload["sub"] == "7"
    assert payload["role"] == "ACCOUNT_ADMIN"
    assert payload["account_id"] == 3
    assert payload["name"] == "Ana"


def test_expired_token():
    token = make_token(1, Role.SUPPLIER, expires_in_minutes=-1)
    with pytest.raises(ValueError, match="Token expirado."):
        AuthService.verify_jwt_token(token)


def test_invalid_token():
    header, payload, _ = make_token(1, Role.SUPPLIER).split(".")
    with pytest.raises(ValueError, match="Token inválido."):
        AuthService.verify_jwt_token(f"{header}.{payload}.assinatura")
    with pytest.raises(ValueError, match="Token inválido."):
        AuthService.verify_jwt_token("nao-e-um-jwt")


def test_normalize_role():
    assert AuthService.normalize_role("ADMIN") == Role.SYSTEM_ADMIN
    assert AuthService.normalize_role("SUPPLIER") == Role.SUPPLIER
    assert AuthService.normalize_role("admin") is None
    assert AuthService.check_permissions([Role.SYSTEM_ADMIN], "ADMIN") is True
    assert AuthService.check_permissions([Role.SYSTEM_ADMIN], "SELLER") is False


@pytest.mark.asyncio
async def test_supplier_access_rules(session_maker, clock):
    """
    Testa as regras de acesso por papel.

    Asserts:
        - SUPPLIER acessa apenas o próprio fornecedor
        - ACCOUNT_ADMIN acessa fornecedores da mesma conta
        - SYSTEM_ADMIN acessa qualquer fornecedor
    """
    own = await create_supplier(session_maker, clock())
    other = await create_supplier(session_maker, clock())
    account_admin = await create_user(session_maker, Role.ACCOUNT_ADMIN, account_id=own["account_id"])

    async with session_maker() as session:
        auth_service = AuthService(session)

        supplier_user = {"id": own["user_id"], "role": "SUPPLIER", "account_id": own["account_id"]}
        supplier = await auth_service.ensure_supplier_access(supplier_user, own["supplier_id"])
        assert supplier.id == own["supplier_id"]
        with pytest.raises(PermissionDenied):
            await auth_service.ensure_supplier_access(supplier_user, other["supplier_id"])

        manager = {"id": account_admin.id, "role": "ACCOUNT_ADMIN", "account_id": own["account_id"]}
        await auth_service.ensure_supplier_access(manager, own["supplier_id"])
        with pytest.raises(PermissionDenied):
            await auth_service.ensure_supplier_access(manager, other["supplier_id"])

        admin = {"id": 999, "role": "ADMIN", "account_id": None}
        await auth_service.ensure_supplier_access(admin, other["supplier_id"])
        with pytest.raises(NotFound):
            await auth_service.ensure_supplier_access(admin, 9999)

        seller = {"id": own["user_id"], "role": "SELLER", "account_id": own["account_id"]}
        with pytest.raises(PermissionDenied):
            await auth_service.ensure_supplier_access(seller, own["supplier_id"])

        linked = await auth_service.get_supplier_for_user(own["user_id"])
        assert linked.id == own["supplier_id"]
        with pytest.raises(NotFound):
            await auth_service.get_supplier_for_user(account_admin.id)
