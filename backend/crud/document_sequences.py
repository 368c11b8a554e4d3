from sqlalchemy import update
from sqlalchemy.orm import Session
from models.document_sequences import DocumentSequence
from models.audit_mixin import now_local


def _insert_ignore(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Document sequences are not supported on '{dialect}'")
    return insert(DocumentSequence)


def next_value(db: Session, tenant_id: str, scope: str) -> int:
    """
    Allocates the next value of the counter ``scope`` for a tenant.

    The counter row is created on first use (a concurrent creator is ignored
    through ON CONFLICT DO NOTHING) and then bumped with a single server-side
    ``last_value = last_value + 1``. The UPDATE keeps the row locked until the
    caller's transaction ends, so two requests can never be handed the same
    number. Does not commit.
    """
    stmt = _insert_ignore(db).values(tenant_id=tenant_id, scope=scope, last_value=0)
    db.execute(stmt.on_conflict_do_nothing(index_elements=["tenant_id", "scope"]))

    db.execute(
        update(DocumentSequence)
        .where(DocumentSequence.tenant_id == tenant_id, DocumentSequence.scope == scope)
        .values(last_value=DocumentSequence.last_value + 1)
        .execution_options(synchronize_session=False)
    )
    return db.query(DocumentSequence.last_value).filter(
        DocumentSequence.tenant_id == tenant_id,
        DocumentSequence.scope == scope
    ).scalar()


def generate_receipt_number(db: Session, tenant_id: str, prefix: str = "REC") -> str:
    """``REC26000001``: prefix, two-digit year, six-digit running counter per year."""
    year = now_local().strftime("%y")
    scope = f"{prefix}{year}"
    return f"{scope}{next_value(db, tenant_id, scope):06d}"


def generate_invoice_number(db: Session, tenant_id: str) -> str:
    """``INV26100001``: year, month, four-digit running counter per month."""
    scope = f"INV{now_local().strftime('%y%m')}"
    return f"{scope}{next_value(db, tenant_id, scope):04d}"
