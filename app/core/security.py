from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import jwt
from app.core.config import Settings, settings as default_settings

ACCESS_TOKEN_EXPIRE_MINUTES = 60

def create_access_token(
    subject: str,
    role: str = "admin",
    expires_delta: Optional[timedelta] = None,
    settings: Optional[Settings] = None
) -> str:
    """Выпуск JWT для доступа к API администратора"""
    settings = settings or default_settings
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": subject, "role": role, "type": "access", "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_token(token: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    settings = settings or default_settings
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
