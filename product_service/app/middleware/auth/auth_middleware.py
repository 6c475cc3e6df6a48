from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...core.exceptions import UnauthorizedError
from ...core.setting import get_settings
from ...utils.jwt_handler import JWTHandler
from ...utils.logging import setup_product_logging

logger = setup_product_logging("product_service_auth")

INVALID_TOKEN_MESSAGE = "Token invalide"


class AuthenticatedUser:
    """
    Dependency that verifies the bearer token of a request.

    Missing credentials are rejected with "Accès refusé", a token that fails
    verification with "Token invalide". Read-only routes do not use it.
    """

    def __init__(self, required_role: Optional[str] = None):
        self.required_role = required_role
        self.security = HTTPBearer(auto_error=False)

    async def __call__(self, request: Request) -> Dict[str, Any]:
        credentials: Optional[HTTPAuthorizationCredentials] = await self.security(
            request
        )
        if credentials is None or not credentials.credentials.strip():
            logger.warning(
                "Authentication failed: missing bearer token",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "event_type": "auth_failed",
                },
            )
            raise UnauthorizedError(detail="missing bearer token")

        settings = getattr(request.app.state, "settings", None) or get_settings()
        handler = JWTHandler(secret_key=settings.SECRET_KEY, algorithm=settings.ALGORITHM)
        try:
            token_data = handler.decode_token(credentials.credentials)
        except ValueError as e:
            logger.warning(
                f"JWT validation failed: {e}",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "event_type": "auth_failed",
                },
            )
            raise UnauthorizedError(INVALID_TOKEN_MESSAGE, detail=str(e))

        if self.required_role and self.required_role not in token_data.roles:
            raise UnauthorizedError(detail=f"Required role: {self.required_role}")

        request.state.user_id = token_data.user_id
        request.state.token_data = token_data.claims

        logger.info(
            "Request authenticated",
            extra={
                "user_id": token_data.user_id,
                "path": request.url.path,
                "method": request.method,
                "event_type": "auth_success",
            },
        )
        return {
            "user_id": token_data.user_id,
            "roles": token_data.roles,
            "token_data": token_data.claims,
        }


authenticated_user = AuthenticatedUser()
