from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from lead_magnet_client.client import DataClient
from lead_magnet_client.config import AuthConfig
from lead_magnet_client.db import UserORM
from lead_magnet_client.server.dependencies import get_auth_config, get_data_client

bearer_scheme = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    sub: str | None = None


def create_access_token(user_id: int, auth: AuthConfig) -> str:
    """Creates a signed JWT whose subject is the user id."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=auth.access_token_expire_minutes)
    to_encode = {"sub": str(user_id), "exp": expire}
    return jwt.encode(to_encode, auth.secret_key, algorithm=auth.algorithm)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    auth: Annotated[AuthConfig, Depends(get_auth_config)],
    data_client: Annotated[DataClient, Depends(get_data_client)],
) -> UserORM:
    """
    Guard for protected endpoints.

    1. Reads the bearer token from the Authorization header.
    2. Verifies signature and expiry.
    3. Loads the user named by `sub`, rejecting unknown or inactive users.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        payload = jwt.decode(credentials.credentials, auth.secret_key, algorithms=[auth.algorithm])
        token_data = TokenData(sub=payload.get("sub"))
        if token_data.sub is None:
            raise credentials_exception
        user_id = int(token_data.sub)
    except (JWTError, ValueError):
        raise credentials_exception

    user = await data_client.get_user_by_id(user_id)
    if user is None or not user.is_active:
        raise credentials_exception
    return user


CurrentUser = Annotated[UserORM, Depends(get_current_user)]
