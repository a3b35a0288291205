import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from wardrobe_chat import config
from wardrobe_chat.services.errors import AuthError


logger = logging.getLogger(__name__)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": user_id, "user": {"id": user_id}, "exp": expire}
    return jwt.encode(payload, _secret(), algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, _secret(), algorithms=[config.JWT_ALGORITHM])


def resolve_identity(credential: Any) -> str:
    """Resolve a bearer credential to a user id; shared by REST and realtime auth."""
    if credential is None or credential == "":
        raise AuthError("No token, authorization denied")
    # socket frames are client JSON and may carry anything here
    if not isinstance(credential, str):
        raise AuthError("Token is not valid")
    if credential.lower().startswith("bearer "):
        credential = credential[7:].strip()
    try:
        payload = decode_access_token(credential)
    except jwt.PyJWTError as exc:
        logger.info("token_rejected reason=%s", exc.__class__.__name__)
        raise AuthError("Token is not valid") from exc
    # Tokens issued by the main app carry {"user": {"id": ...}}.
    user_id = payload.get("sub") or (payload.get("user") or {}).get("id")
    if not user_id:
        raise AuthError("Token is not valid")
    return str(user_id)


def _secret() -> str:
    if not config.JWT_SECRET:
        logger.error("Missing JWT_SECRET (server misconfigured)")
        raise AuthError("Authentication is not configured")
    return config.JWT_SECRET
