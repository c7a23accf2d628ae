from __future__ import annotations

import argparse
import asyncio
import json
import sys

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from app.core.config import settings
from app.core.security import generate_api_key
import app.models  # noqa: F401
from app.models.api_key import ApiKey
from app.models.courier import Courier
from app.models.enums import ActorRole


async def issue_key(db: AsyncSession, role: ActorRole, *, courier_id: str | None = None, label: str | None = None) -> dict:
    key = generate_api_key()
    row = ApiKey(
        role=role,
        courier_id=courier_id,
        label=label,
        key_prefix=key.prefix,
        key_hash=key.hashed,
        is_active=True,
    )
    db.add(row)
    await db.flush()
    # plain key is only ever shown here
    return {"id": row.id, "role": role.value, "courier_id": courier_id, "plain_key": key.plain}


async def seed(courier_name: str, courier_email: str | None, roles: list[ActorRole]) -> dict:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)

    out: dict = {"courier": None, "keys": []}
    try:
        async with Session() as db:
            courier = (await db.execute(select(Courier).where(Courier.name == courier_name))).scalar_one_or_none()
            if not courier:
                courier = Courier(name=courier_name, email=courier_email, created_by="internal", updated_by="internal")
                db.add(courier)
                await db.flush()
            out["courier"] = {"id": courier.id, "name": courier.name}

            for role in roles:
                bound = courier.id if role == ActorRole.DRIVER else None
                out["keys"].append(await issue_key(db, role, courier_id=bound, label=f"seed:{role.value}"))

            await db.commit()
    finally:
        await engine.dispose()
    return out


def main() -> int:
    p = argparse.ArgumentParser(description="Create a courier and API keys for local development.")
    p.add_argument("--courier-name", default="Dev Courier")
    p.add_argument("--courier-email")
    p.add_argument(
        "--role",
        action="append",
        choices=[r.value for r in ActorRole],
        help="repeatable; defaults to dispatcher + driver + customer",
    )
    p.add_argument("--admin-key", default="", help="must match INTERNAL_ADMIN_KEY")
    args = p.parse_args()

    if not args.admin_key or args.admin_key != settings.internal_admin_key:
        print("Refusing to seed: --admin-key does not match INTERNAL_ADMIN_KEY.", file=sys.stderr)
        return 2

    roles = [ActorRole(r) for r in (args.role or ["dispatcher", "driver", "customer"])]
    result = asyncio.run(seed(args.courier_name, args.courier_email, roles))
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
