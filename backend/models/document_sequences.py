from sqlalchemy import Column, Integer, String, UniqueConstraint
from database import Base

class DocumentSequence(Base):
    """Per-tenant running counter for one numbering scope (e.g. ``REC26``)."""
    __tablename__ = "document_sequences"
    __table_args__ = (UniqueConstraint('tenant_id', 'scope', name='_tenant_sequence_scope_uc'),)

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(String, nullable=False, index=True)
    scope = Column(String(30), nullable=False)
    last_value = Column(Integer, nullable=False, default=0)
