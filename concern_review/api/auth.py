"""Bearer token authentication for the concern review API"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from pydantic import BaseModel
from concern_review.config import settings

logger = logging.getLogger(__name__)


class AuthResult(BaseModel):
    """Authentication result"""
    authenticated: bool
    user_id: Optional[str] = None
    error: Optional[str] = None


class Authenticator:
    """
    Issues and verifies JWT bearer tokens.

    A token only carries the caller's identity. The reviewer role is always
    looked up from the reviewer directory, never trusted from the token.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        access_token_expire_minutes: Optional[int] = None
    ):
        """
        Initialize authenticator.

        Args:
            secret_key: Secret key for JWT signing (defaults to config)
            algorithm: JWT algorithm (defaults to config)
            access_token_expire_minutes: Token expiration time in minutes
        """
        self.secret_key = secret_key or settings.security.jwt_secret
        self.algorithm = algorithm or settings.security.jwt_algorithm
        self.access_token_expire_minutes = (
            access_token_expire_minutes or settings.security.jwt_expiry_minutes
        )

    def generate_token(self, user_id: str, expiry_minutes: Optional[int] = None) -> str:
        """
        Generate a JWT token for a reviewer identity.

        Args:
            user_id: Reviewer identity
            expiry_minutes: Custom expiration time (overrides default)

        Returns:
            JWT token string
        """
        expiry = expiry_minutes or self.access_token_expire_minutes
        now = datetime.utcnow()

        payload = {
            "sub": user_id,
            "exp": now + timedelta(minutes=expiry),
            "iat": now
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.info(f"Generated token for {user_id}")
        return token

    def verify_token(self, token: str) -> AuthResult:
        """
        Verify a JWT token.

        Checks signature, expiry and the subject claim. Verification keeps no
        per-token state.

        Args:
            token: JWT token string

        Returns:
            AuthResult with authentication status and identity
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            logger.warning("Token has expired")
            return AuthResult(authenticated=False, error="Token has expired")
        except JWTError as e:
            logger.warning(f"Token verification failed: {str(e)}")
            return AuthResult(authenticated=False, error=f"Invalid token: {str(e)}")

        user_id = payload.get("sub")
        if not user_id:
            logger.warning("Token missing subject")
            return AuthResult(authenticated=False, error="Invalid token payload")

        result = AuthResult(authenticated=True, user_id=user_id)
        logger.debug(f"Token verified for {user_id}")
        return result


# Global authenticator instance
authenticator = Authenticator()
