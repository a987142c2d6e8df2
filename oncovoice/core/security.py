"""
Sicherheitsmodule: Request-IDs und signierte Upload-Tokens
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple
from jose import JWTError, jwt
from fastapi import Request
from fastapi.security.utils import get_authorization_scheme_param
from oncovoice.config import settings
from oncovoice.core.exceptions import UploadTokenError
from oncovoice.core.logging import get_logger

logger = get_logger(__name__)

UPLOAD_TOKEN_SCOPE = "blob-upload"


class SecurityManager:
    """Zentrale Sicherheitsverwaltung"""

    def __init__(self, secret_key: str = None, algorithm: str = None):
        self.secret_key = secret_key or settings.api_secret_key
        self.algorithm = algorithm or settings.token_algorithm

    def create_upload_token(
        self,
        pathname: str,
        team_id: int,
        expires_delta: Optional[timedelta] = None
    ) -> Tuple[str, datetime]:
        """Erstellt einen JWT, der genau einen Upload nach `pathname` erlaubt"""
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.upload_token_expire_minutes)
        expire = datetime.now(timezone.utc) + expires_delta

        to_encode = {
            "sub": pathname,
            "team_id": team_id,
            "scope": UPLOAD_TOKEN_SCOPE,
            "exp": expire,
        }
        encoded_jwt = jwt.encode(to_encode, self.secret_key, algorithm=self.algorithm)
        return encoded_jwt, expire

    def verify_upload_token(self, token: str, pathname: str) -> Dict[str, Any]:
        """Verifiziert einen Upload-Token für den angegebenen Pfad"""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.warning(f"Upload token verification failed: {e}")
            raise UploadTokenError("Invalid or expired upload token")

        if payload.get("scope") != UPLOAD_TOKEN_SCOPE:
            raise UploadTokenError("Token is not an upload token")
        if payload.get("sub") != pathname:
            logger.warning(f"Upload token issued for {payload.get('sub')} used for {pathname}")
            raise UploadTokenError("Upload token does not match the requested pathname")
        return payload

    def generate_request_id(self) -> str:
        """Generiert eine eindeutige Request-ID"""
        return secrets.token_urlsafe(16)


# Global security manager instance
security_manager = SecurityManager()


def get_bearer_token(request: Request) -> str:
    """Liest den Bearer-Token aus dem Authorization-Header"""
    scheme, credentials = get_authorization_scheme_param(request.headers.get("Authorization"))
    if scheme.lower() != "bearer" or not credentials:
        raise UploadTokenError("Missing upload token")
    return credentials
