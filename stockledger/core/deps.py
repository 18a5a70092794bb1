from collections.abc import Iterator

from fastapi import Header
from sqlalchemy.orm import Session

from stockledger.core.errors import require_tenant
from stockledger.db.session import SessionLocal


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_tenant_id(x_tenant_id: str = Header(..., min_length=1, max_length=36)) -> str:
    return require_tenant(x_tenant_id)


def get_actor(x_actor: str | None = Header(default=None, max_length=64)) -> str:
    if x_actor is None or not x_actor.strip():
        return "api"
    return x_actor.strip()
