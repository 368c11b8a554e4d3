import logging
from datetime import date
from typing import Optional

from database import SessionLocal
from crud import fee_invoices as crud_fee_invoices

logger = logging.getLogger(__name__)

def run_eod_tasks(today: Optional[date] = None):
    """
    End-of-day job: flags unpaid invoices whose due date has passed as overdue.

    Runs across all tenants with its own session, outside any request.
    """
    db = SessionLocal()
    try:
        flagged = crud_fee_invoices.mark_overdue_invoices(db, today=today)
        logger.info(f"EOD tasks complete: {flagged} invoice(s) marked overdue.")
        return flagged
    except Exception:
        db.rollback()
        logger.exception("EOD tasks failed.")
        raise
    finally:
        db.close()
