import uuid
from typing import Literal

from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel

from api.crud.errors import Forbidden
from config import ENV
env = ENV()
API_KEY = env.service_api_token


class Identity(BaseModel):
    user_id: uuid.UUID
    role: Literal["admin", "user"] = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def require_service_key(x_api_key: str | None = Header(None)):
    if not API_KEY:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="API key not configured")
    if not x_api_key or x_api_key != API_KEY:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid service key")
    return True


async def get_identity(
    x_user_id: uuid.UUID = Header(...),
    x_user_role: Literal["admin", "user"] = Header("user"),
) -> Identity:
    # set by the identity gateway in front of us, trusted because of the service key
    return Identity(user_id=x_user_id, role=x_user_role)


async def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise Forbidden("This operation requires the admin role")
    return identity
