# D:\Settlement\settlement\services\auth_service.py

"""
auth_service.py

Este módulo contém a classe AuthService, responsável pela autenticação por token JWT
e pela autorização de acesso aos dados financeiros de um fornecedor.

A identidade do usuário é sempre estabelecida externamente: o serviço apenas emite
e valida tokens para usuários já cadastrados e não cria usuários de fallback.

Classes:
    AuthService: Provedor de serviços de autenticação e autorização.
"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import JWT_SECRET_KEY, JWT_EXPIRATION_MINUTES
from settlement.models.database import Role, Supplier, User
from settlement.services.errors import NotFound, PermissionDenied


class AuthService:
    """
    Serviço de autenticação e autorização.

    Métodos:
        generate_jwt_token: Gera um token JWT para um usuário.
        verify_jwt_token: Decodifica e valida um token JWT.
        normalize_role: Converte o papel do token em Role.
        check_permissions: Verifica se o papel está entre os permitidos.
        get_supplier_for_user: Retorna o fornecedor vinculado a um usuário SUPPLIER.
        ensure_supplier_access: Verifica se o usuário pode operar um fornecedor.
    """

    def __init__(self, db_session: AsyncSession):
        """
        Inicializa o AuthService com uma sessão de banco de dados.

        Args:
            db_session (AsyncSession): Sessão assíncrona do banco de dados.
        """
        self.db_session = db_session

    @staticmethod
    def generate_jwt_token(user: User, expires_in_minutes: Optional[int] = None) -> str:
        """
        Gera um token JWT contendo informações do usuário.

        Args:
            user (User): Objeto do usuário para o qual o token será gerado.
            expires_in_minutes (Optional[int]): Validade do token (padrão: JWT_EXPIRATION_MINUTES).

        Returns:
            str: Token JWT gerado.
        """
        minutes = JWT_EXPIRATION_MINUTES if expires_in_minutes is None else expires_in_minutes
        # O claim exp é sempre interpretado como UTC pelo PyJWT
        expires = datetime.now(timezone.utc) + timedelta(minutes=minutes)
        payload = {
            "sub": str(user.id),
            "role": Role.parse(user.role).value,
            "account_id": user.account_id,
            "name": user.name,
            "exp": expires
        }
        return jwt.encode(payload, JWT_SECRET_KEY, algorithm="HS256")

    @staticmethod
    def verify_jwt_token(token: str) -> dict:
        """
        Decodifica e valida um token JWT.

        Args:
            token (str): Token JWT a ser validado.

        Returns:
            dict: Payload decodificado do token.

        Raises:
            ValueError: Se o token for inválido ou expirado.
        """
        try:
            return jwt.decode(
                token,
                JWT_SECRET_KEY,
                algorithms=["HS256"],
                options={"verify_exp": True}
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Token expirado.")
        except jwt.InvalidTokenError:
            raise ValueError("Token inválido.")

    @staticmethod
    def normalize_role(value) -> Optional[Role]:
        """
        Converte o papel recebido no token em Role, aceitando o legado 'ADMIN'.

        Returns:
            Optional[Role]: Papel reconhecido ou None se desconhecido.
        """
        try:
            return Role.parse(value)
        except ValueError:
            return None

    @staticmethod
    def check_permissions(allowed_roles, user_role) -> bool:
        """
        Verifica se o papel do usuário está entre os papéis permitidos.

        Args:
            allowed_roles: Papéis que podem acessar o recurso.
            user_role: Papel do usuário atual (str ou Role).

        Returns:
            bool: True se o usuário tiver permissão, False caso contrário.
        """
        role = AuthService.normalize_role(user_role)
        if role is None:
            return False
        return role in {Role.parse(allowed) for allowed in allowed_roles}

    async def get_supplier_for_user(self, user_id: int) -> Supplier:
        """
        Retorna o fornecedor vinculado a um usuário.

        Raises:
            NotFound: Se o usuário não possuir fornecedor.
        """
        result = await self.db_session.execute(
            select(Supplier).where(Supplier.user_id == user_id).order_by(Supplier.id).limit(1)
        )
        supplier = result.scalar_one_or_none()
        if not supplier:
            raise NotFound("Nenhum fornecedor vinculado a este usuário")
        return supplier

    async def ensure_supplier_access(self, user: Dict, supplier_id: int) -> Supplier:
        """
        Verifica se o usuário pode acessar os dados financeiros do fornecedor.

        Regras:
            - SYSTEM_ADMIN acessa qualquer fornecedor
            - ACCOUNT_ADMIN acessa fornecedores da mesma conta
            - SUPPLIER acessa apenas o próprio fornecedor

        Args:
            user (Dict): Usuário autenticado (id, role, account_id).
            supplier_id (int): ID do fornecedor.

        Returns:
            Supplier: Fornecedor acessado.

        Raises:
            NotFound: Se o fornecedor não existir.
            PermissionDenied: Se o usuário não tiver acesso.
        """
        supplier = await self.db_session.get(Supplier, supplier_id)
        if not supplier:
            raise NotFound(f"Fornecedor {supplier_id} não encontrado")

        role = self.normalize_role(user.get("role"))
        if role == Role.SYSTEM_ADMIN:
            return supplier
        if role == Role.ACCOUNT_ADMIN and user.get("account_id") is not None \
                and user.get("account_id") == supplier.account_id:
            return supplier
        if role == Role.SUPPLIER and supplier.user_id is not None and supplier.user_id == user.get("id"):
            return supplier

        raise PermissionDenied("Acesso negado aos dados financeiros deste fornecedor")
