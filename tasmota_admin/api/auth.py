import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel

from tasmota_admin.core.env_settings import env
from tasmota_admin.utils.security import authenticate_user, create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


class Token(BaseModel):
    access_token: str
    token_type: str


@router.post("/login", response_model=Token, summary="User login and JWT token retrieval")
async def login(form_data: OAuth2PasswordRequestForm = Depends()):
    """
    Login endpoint that verifies user credentials and returns a JWT token.
    """
    user = authenticate_user(form_data.username, form_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(
        data={"sub": user["username"], "role": user["role"]},
        expires_delta=timedelta(minutes=env.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    logger.info(f"Login successful for user: {user['username']}")
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/logout", summary="User logout")
async def logout():
    """
    Tokens are stateless; the client discards its token.
    """
    logger.info("Logout requested.")
    return {"message": "Logout successful"}
