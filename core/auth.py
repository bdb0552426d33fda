import base64
import json
import logging
from functools import lru_cache

import firebase_admin
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import ErrorCode, ErrorMessage, not_found, unauthorized
from core.models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


class TokenVerifier:
    """Verifies identity tokens issued by Firebase Authentication."""

    def __init__(self, service_account_b64: str | None = None):
        self._service_account_b64 = service_account_b64
        self._app = None

    def _get_app(self):
        if self._app is not None:
            return self._app

        try:
            self._app = firebase_admin.get_app()
            return self._app
        except ValueError:
            pass

        if not self._service_account_b64:
            raise RuntimeError("FIREBASE_SERVICE_ACCOUNT_KEY environment variable is not set")

        try:
            service_account = json.loads(base64.b64decode(self._service_account_b64).decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            raise RuntimeError("Invalid Firebase service account key")

        self._app = firebase_admin.initialize_app(
            credentials.Certificate(service_account),
            {"projectId": service_account.get("project_id")},
        )
        return self._app

    def verify(self, id_token: str | None) -> dict:
        if not id_token:
            raise unauthorized(ErrorMessage.INVALID_TOKEN, ErrorCode.AUTH_INVALID_TOKEN)

        try:
            return firebase_auth.verify_id_token(id_token, app=self._get_app())
        except (ValueError, firebase_auth.InvalidIdTokenError, firebase_auth.ExpiredIdTokenError,
                firebase_auth.RevokedIdTokenError, firebase_auth.CertificateFetchError) as e:
            logger.warning("Token verification error: %s", e)
            raise unauthorized(ErrorMessage.INVALID_TOKEN, ErrorCode.AUTH_INVALID_TOKEN)


@lru_cache(maxsize=1)
def get_token_verifier() -> TokenVerifier:
    return TokenVerifier(settings.FIREBASE_SERVICE_ACCOUNT_KEY)


def bearer_token(credentials: HTTPAuthorizationCredentials | None = Depends(security)) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer" or not credentials.credentials:
        raise unauthorized(ErrorMessage.AUTH_HEADER_MISSING)
    return credentials.credentials


def get_token_claims(
    token: str = Depends(bearer_token),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> dict:
    return verifier.verify(token)


def find_user(db: Session, claims: dict) -> User | None:
    user = db.query(User).filter(User.firebase_id == claims.get("uid")).first()
    if user is None and claims.get("email"):
        user = db.query(User).filter(User.email == claims["email"]).first()
    return user


def require_user(db: Session, claims: dict) -> User:
    user = find_user(db, claims)
    if not user:
        raise not_found(ErrorCode.USER_NOT_FOUND, ErrorMessage.USER_NOT_FOUND)
    return user
