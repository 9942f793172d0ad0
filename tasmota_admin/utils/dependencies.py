from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from tasmota_admin.services.tasmota import TasmotaService
from tasmota_admin.utils.security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_user(token: str = Depends(oauth2_scheme)) -> dict:
    """
    Verifies JWT token and returns user payload.
    """
    try:
        payload = decode_access_token(token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    username = payload.get("sub")
    role = payload.get("role")
    if username is None or role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return {"username": username, "role": role}


async def is_authenticated(user: dict = Depends(get_current_user)) -> bool:
    return True


def require_role(required_roles):
    """
    Dependency to enforce role-based access control.
    Accepts either a single role (str) or a list of allowed roles.
    """
    allowed = [required_roles] if isinstance(required_roles, str) else list(required_roles)

    async def role_checker(user: dict = Depends(get_current_user)) -> dict:
        if user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied for role: {user['role']}",
            )
        return user
    return role_checker


is_admin = require_role("admin")


def get_tasmota_service(request: Request) -> TasmotaService:
    """The device facade created in the application lifespan."""
    return request.app.state.tasmota
