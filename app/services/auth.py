from dataclasses import dataclass
from fastapi import Depends, HTTPException, Security
from fastapi.security.api_key import APIKeyHeader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.db import get_db
from app.core.security import hash_api_key
from app.models.api_key import ApiKey
from app.models.enums import ActorRole

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

DISPATCH_ROLES = frozenset({ActorRole.ADMIN, ActorRole.DISPATCHER})


@dataclass(frozen=True)
class Actor:
    api_key_id: str
    role: ActorRole
    courier_id: str | None  # set for drivers only


async def get_actor(
    api_key: str | None = Security(api_key_header),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing X-API-Key")

    hashed = hash_api_key(api_key)
    stmt = select(ApiKey).where(ApiKey.key_hash == hashed, ApiKey.is_active.is_(True))
    row = (await db.execute(stmt)).scalar_one_or_none()
    if not row:
        raise HTTPException(status_code=401, detail="Invalid API key")

    return Actor(api_key_id=row.id, role=row.role, courier_id=row.courier_id)


def require_dispatcher(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role not in DISPATCH_ROLES:
        raise HTTPException(status_code=403, detail="Dispatcher role required")
    return actor


def require_driver(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != ActorRole.DRIVER:
        raise HTTPException(status_code=403, detail="Driver role required")
    if not actor.courier_id:
        raise HTTPException(status_code=403, detail="Driver key is not bound to a courier")
    return actor
