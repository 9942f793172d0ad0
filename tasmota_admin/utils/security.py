import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from tasmota_admin.core.env_settings import env

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Set up password hashing with bcrypt
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain text password against a bcrypt hash.
    An empty or malformed hash never matches.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        logger.error("Stored password hash is not a valid bcrypt hash")
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def authenticate_user(username: str, password: str) -> Optional[dict]:
    """
    Authenticate against the user and admin accounts from the environment.
    """
    logger.info(f"Attempting authentication for user: {username}")
    if username == env.USER_USERNAME and verify_password(password, env.HASHED_USER_PASSWORD):
        logger.info(f"User '{username}' authenticated successfully (role: user).")
        return {"username": username, "role": "user"}

    if username == env.ADMIN_USERNAME and verify_password(password, env.HASHED_ADMIN_PASSWORD):
        logger.info(f"Admin '{username}' authenticated successfully (role: admin).")
        return {"username": username, "role": "admin"}

    logger.warning(f"Failed authentication attempt for user: {username}")
    return None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=env.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, env.SECRET_KEY, algorithm=env.ALGORITHM)
    logger.info(f"JWT created for user {data['sub']} with expiration at {expire}")
    return encoded_jwt


def decode_access_token(token: str) -> dict:
    """
    Decode a JWT token. Returns the payload if valid, otherwise raises JWTError.
    """
    return jwt.decode(token, env.SECRET_KEY, algorithms=[env.ALGORITHM])

