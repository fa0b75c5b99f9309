# billing_api/api/clients.py

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.engine import Engine

from billing_api import config
from billing_api.api.deps import check_id, get_actor, scope_for
from billing_api.db.engine import get_engine
from billing_api.db.schema import clients
from billing_api.errors import NotFoundError
from billing_api.models.clients import ClientOut, ClientPage
from billing_api.models.common import Envelope, Pagination, as_utc
from billing_api.services.access import Actor

router = APIRouter(prefix="/clients", tags=["clients"])


def _row_to_client(row) -> ClientOut:
    return ClientOut(
        id=row["id"],
        client_name=row["client_name"],
        phone_number=row["phone_number"],
        gender=row["gender"],
        village=row["village"],
        documents=row["documents"] or {},
        created_by_user_id=row["created_by"],
        created_at=as_utc(row["created_at"]),
        updated_at=as_utc(row["updated_at"]),
    )


@router.get("/", response_model=Envelope[ClientPage])
def list_clients(
    search: Optional[str] = Query(default=None, description="Name or phone number, case-insensitive"),
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[ClientPage]:
    """
    Clients known to the caller (all clients for Admin), ordered by name.
    Clients are created and kept up to date from bills.
    """
    scope = scope_for(actor)

    count_stmt = scope.apply(select(func.count()).select_from(clients), clients.c.created_by)
    stmt = scope.apply(select(clients), clients.c.created_by)

    term = (search or "").strip().lower()
    if term:
        match = or_(
            func.lower(clients.c.client_name).contains(term, autoescape=True),
            clients.c.phone_number.contains(term, autoescape=True),
        )
        count_stmt = count_stmt.where(match)
        stmt = stmt.where(match)

    stmt = stmt.order_by(clients.c.client_name).limit(limit).offset((page - 1) * limit)

    with engine.connect() as conn:
        total = conn.execute(count_stmt).scalar_one()
        rows = conn.execute(stmt).mappings().all()

    return Envelope(
        data=ClientPage(
            clients=[_row_to_client(row) for row in rows],
            pagination=Pagination.of(total, page, limit),
        )
    )


@router.get("/{client_id}", response_model=Envelope[ClientOut])
def get_client(
    client_id: str,
    actor: Actor = Depends(get_actor),
    engine: Engine = Depends(get_engine),
) -> Envelope[ClientOut]:
    """
    Return a single client by ID.
    """
    stmt = scope_for(actor).apply(
        select(clients).where(clients.c.id == check_id(client_id, "client")),
        clients.c.created_by,
    )

    with engine.connect() as conn:
        row = conn.execute(stmt).mappings().first()

    if row is None:
        raise NotFoundError("Client not found")

    return Envelope(data=_row_to_client(row))
