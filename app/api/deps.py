# app/api/deps.py
from typing import Optional, Dict, Any
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from app.core.context import AppContext
from app.core.security import decode_token

# Bearer-токен из заголовка Authorization
bearer_scheme = HTTPBearer(auto_error=False)

def get_context(request: Request) -> AppContext:
    """Контекст приложения, созданный при старте"""
    return request.app.state.context

async def get_token_payload(
    context: AppContext = Depends(get_context),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Dict[str, Any]:
    """Проверить токен и вернуть его содержимое"""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_token(credentials.credentials, context.settings)
    except JWTError:
        raise credentials_exception

    if payload.get("sub") is None or payload.get("type") != "access":
        raise credentials_exception
    return payload

async def require_admin(payload: Dict[str, Any] = Depends(get_token_payload)) -> Dict[str, Any]:
    """Требовать роль администратора"""
    if payload.get("role") != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions. Admin role required."
        )
    return payload
