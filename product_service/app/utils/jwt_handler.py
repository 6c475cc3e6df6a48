"""
JWT Handler for Product Service

Verifies the bearer tokens issued by the user service. Tokens are signed with
the shared SECRET_KEY; only the signature and expiry are enforced.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError
from pydantic import BaseModel

# Claim names used by the issuing services for the caller id
_USER_ID_CLAIMS = ("user_id", "userId", "id", "sub")


class TokenData(BaseModel):
    """Token data model for decoded JWT tokens"""

    user_id: Optional[str] = None
    email: str = ""
    roles: List[str] = []
    expires_at: Optional[datetime] = None
    claims: Dict[str, Any] = {}


class JWTHandler:
    """
    JWT token handler for encoding and decoding tokens.
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def encode_token(
        self, payload: Dict[str, Any], expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Encode payload into JWT token.

        Args:
            payload: Token payload data
            expires_delta: Token expiration time (default: 30 minutes)

        Returns:
            Encoded JWT token string
        """
        to_encode = payload.copy()
        now = datetime.now(timezone.utc)
        to_encode.update(
            {
                "exp": now + (expires_delta or timedelta(minutes=30)),
                "iat": int(now.timestamp()),
            }
        )
        return jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> TokenData:
        """
        Decode and validate JWT token.

        Raises:
            ValueError: If token is invalid, expired, or malformed
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise ValueError("Token has expired")
        except JWTError as e:
            raise ValueError(f"Token validation failed: {e}")

        user_id = next(
            (payload[claim] for claim in _USER_ID_CLAIMS if payload.get(claim)), None
        )
        roles = payload.get("roles") or ([payload["role"]] if payload.get("role") else [])
        exp = payload.get("exp")

        return TokenData(
            user_id=str(user_id) if user_id is not None else None,
            email=payload.get("email", ""),
            roles=list(roles),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc) if exp else None,
            claims=payload,
        )
