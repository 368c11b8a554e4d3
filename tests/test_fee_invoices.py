import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError

from conftest import OTHER_TENANT, TENANT, make_invoice, make_student
from crud import fee_invoices as crud_fee_invoices
from crud.audit_log import get_audit_logs
from database import SessionLocal, engine
from models.fee_invoices import FeeInvoice, InvoiceStatus
from schemas.fee_invoices import BulkInvoiceCreate, FeeInvoiceCreate
from tasks import eod_tasks
from utils.errors import ConflictError, NotFoundError, ValidationError


@pytest.mark.parametrize("net, paid, expected", [
    ("1000", "0", InvoiceStatus.PENDING),
    ("1000", "400", InvoiceStatus.PARTIAL),
    ("1000", "1000", InvoiceStatus.PAID),
    ("0", "0", InvoiceStatus.PAID),
])
def test_derive_invoice_status(net, paid, expected):
    assert crud_fee_invoices.derive_invoice_status(Decimal(net), Decimal(paid)) == expected


def test_partial_then_full_payment(db):
    student = make_student(db)
    invoice = make_invoice(db, student, net_amount="1000")

    updated = crud_fee_invoices.apply_payment(db, TENANT, invoice.id, Decimal("400"), changed_by="bursar")
    db.commit()
    assert updated.paid_amount == Decimal("400")
    assert updated.balance_amount == Decimal("600")
    assert updated.status == InvoiceStatus.PARTIAL.value

    updated = crud_fee_invoices.apply_payment(db, TENANT, invoice.id, Decimal("600"), changed_by="bursar")
    db.commit()
    assert updated.paid_amount == Decimal("1000")
    assert updated.balance_amount == Decimal("0")
    assert updated.status == InvoiceStatus.PAID.value

    actions = [log.action for log in get_audit_logs(db, TENANT, "fee_invoices", invoice.id)]
    assert actions == ["PAYMENT", "PAYMENT"]


def test_overpayment_is_rejected_and_ledger_unchanged(db):
    student = make_student(db)
    invoice = make_invoice(db, student, net_amount="150")

    crud_fee_invoices.apply_payment(db, TENANT, invoice.id, Decimal("100"))
    db.commit()

    with pytest.raises(ConflictError):
        crud_fee_invoices.apply_payment(db, TENANT, invoice.id, Decimal("100"))
    db.rollback()

    db.expire_all()
    stored = crud_fee_invoices.get_invoice(db, TENANT, invoice.id)
    assert stored.paid_amount == Decimal("100")
    assert stored.balance_amount == Decimal("50")
    assert stored.status == InvoiceStatus.PARTIAL.value


def test_payment_on_settled_invoice_conflicts(db):
    student = make_student(db)
    invoice = make_invoice(db, student, net_amount="500")
    crud_fee_invoices.apply_payment(db, TENANT, invoice.id, Decimal("500"))
    db.commit()

    with pytest.raises(ConflictError, match="already fully paid"):
        crud_fee_invoices.apply_payment(db, TENANT, invoice.id, Decimal("1"))


def test_apply_payment_unknown_invoice(db):
    with pytest.raises(NotFoundError):
        crud_fee_invoices.apply_payment(db, TENANT, 999, Decimal("10"))


def test_apply_payment_is_tenant_scoped(db):
    student = make_student(db)
    invoice = make_invoice(db, student)
    with pytest.raises(NotFoundError):
        crud_fee_invoices.apply_payment(db, OTHER_TENANT, invoice.id, Decimal("10"))


@pytest.mark.parametrize("amount", ["0", "-5"])
def test_apply_payment_requires_positive_amount(db, amount):
    student = make_student(db)
    invoice = make_invoice(db, student)
    with pytest.raises(ValidationError):
        crud_fee_invoices.apply_payment(db, TENANT, invoice.id, Decimal(amount))


def test_generate_invoice_defaults_and_numbering(db):
    student = make_student(db)
    created = crud_fee_invoices.generate_invoice(
        db, TENANT,
        FeeInvoiceCreate(student_id=student.id, total_amount=Decimal("12000"), discount_amount=Decimal("2000"),
                         month=date(2026, 1, 1)),
        created_by="bursar"
    )
    assert created.net_amount == Decimal("10000")
    assert created.balance_amount == Decimal("10000")
    assert created.paid_amount == Decimal("0")
    assert created.status == InvoiceStatus.PENDING.value
    assert created.due_date == date(2026, 1, 10)
    assert created.invoice_number.startswith("INV")
    assert created.invoice_number.endswith("0001")
    assert get_audit_logs(db, TENANT, "fee_invoices", created.id)[0].action == "CREATE"


def test_generate_invoice_rejects_duplicate_month(db):
    student = make_student(db)
    data = FeeInvoiceCreate(student_id=student.id, total_amount=Decimal("5000"), month=date(2026, 2, 1))
    crud_fee_invoices.generate_invoice(db, TENANT, data, created_by="bursar")
    with pytest.raises(ConflictError):
        crud_fee_invoices.generate_invoice(db, TENANT, data, created_by="bursar")


def test_soft_deleted_invoice_still_holds_its_month(db):
    student = make_student(db)
    retired = make_invoice(db, student, invoice_number="INV1", month=date(2026, 2, 1))
    retired.deleted_at = datetime(2026, 2, 3, tzinfo=timezone.utc)
    db.commit()

    data = FeeInvoiceCreate(student_id=student.id, total_amount=Decimal("5000"), month=date(2026, 2, 1))
    with pytest.raises(ConflictError, match="already exists"):
        crud_fee_invoices.generate_invoice(db, TENANT, data, created_by="bursar")

    # Session is usable again after the rollback
    assert crud_fee_invoices.generate_invoice(
        db, TENANT, data.model_copy(update={"month": date(2026, 3, 1)}), created_by="bursar"
    ).month == date(2026, 3, 1)


def test_invoice_month_is_unique_per_student(db):
    student = make_student(db)
    make_invoice(db, student, invoice_number="INV1")
    with pytest.raises(IntegrityError):
        make_invoice(db, student, invoice_number="INV2")
    db.rollback()


def _pay_in_own_session(invoice_id, amount, barrier):
    session = SessionLocal()
    try:
        barrier.wait()
        if engine.dialect.name == "sqlite":
            # SQLite locks the whole file; take the write lock up front as a row lock would
            session.execute(text("BEGIN IMMEDIATE"))
        crud_fee_invoices.apply_payment(session, TENANT, invoice_id, amount, changed_by="teller")
        session.commit()
        return "ok"
    except ConflictError:
        session.rollback()
        return "conflict"
    finally:
        session.close()


def test_concurrent_payments_cannot_overdraw_balance(db):
    invoice = make_invoice(db, make_student(db), net_amount="150")
    barrier = threading.Barrier(2)

    with ThreadPoolExecutor(max_workers=2) as pool:
        futures = [pool.submit(_pay_in_own_session, invoice.id, Decimal("100"), barrier) for _ in range(2)]
        results = sorted(f.result(timeout=30) for f in futures)

    assert results == ["conflict", "ok"]
    db.expire_all()
    stored = db.query(FeeInvoice).filter(FeeInvoice.id == invoice.id).one()
    assert stored.paid_amount == Decimal("100")
    assert stored.balance_amount == Decimal("50")
    assert stored.status == InvoiceStatus.PARTIAL.value


def test_generate_invoice_rejects_discount_above_total(db):
    student = make_student(db)
    with pytest.raises(ValidationError):
        crud_fee_invoices.generate_invoice(
            db, TENANT,
            FeeInvoiceCreate(student_id=student.id, total_amount=Decimal("100"), discount_amount=Decimal("200")),
            created_by="bursar"
        )


def test_generate_invoice_unknown_student(db):
    with pytest.raises(NotFoundError):
        crud_fee_invoices.generate_invoice(
            db, TENANT, FeeInvoiceCreate(student_id=42, total_amount=Decimal("100")), created_by="bursar"
        )


def test_bulk_invoices_for_one_class(db):
    make_student(db, admission_number="ADM001", class_name="Grade 4")
    make_student(db, admission_number="ADM002", class_name="Grade 4", first_name="Wanjiru")
    make_student(db, admission_number="ADM003", class_name="Grade 5")
    make_student(db, admission_number="ADM004", class_name="Grade 4", status="inactive")

    result = crud_fee_invoices.generate_bulk_invoices(
        db, TENANT,
        BulkInvoiceCreate(amount=Decimal("8500"), due_date=date(2026, 1, 15), class_name="Grade 4", academic_year="2026"),
        created_by="bursar"
    )
    assert result["total_students"] == 2
    assert result["invoices_created"] == 2
    assert result["errors_count"] == 0
    numbers = [item["invoice_number"] for item in result["invoices"]]
    assert len(set(numbers)) == 2

    invoice = db.query(FeeInvoice).filter(FeeInvoice.id == result["invoices"][0]["id"]).one()
    assert invoice.description == "Tuition Fee - 2026"
    assert invoice.balance_amount == Decimal("8500")


def test_bulk_invoices_without_students(db):
    with pytest.raises(NotFoundError):
        crud_fee_invoices.generate_bulk_invoices(
            db, TENANT, BulkInvoiceCreate(amount=Decimal("100"), due_date=date(2026, 1, 15)), created_by="bursar"
        )


def test_defaulters_and_student_account(db):
    first = make_student(db, admission_number="ADM001")
    second = make_student(db, admission_number="ADM002", first_name="Wanjiru")
    make_invoice(db, first, net_amount="3000", invoice_number="INV1")
    paid = make_invoice(db, second, net_amount="1000", invoice_number="INV2")
    crud_fee_invoices.apply_payment(db, TENANT, paid.id, Decimal("1000"))
    db.commit()

    defaulters = crud_fee_invoices.get_defaulters(db, TENANT)
    assert [d["student_id"] for d in defaulters] == [first.id]
    assert defaulters[0]["total_due"] == Decimal("3000")
    assert defaulters[0]["pending_invoices"] == 1

    account = crud_fee_invoices.get_student_fee_account(db, TENANT, second.id)
    assert account["total_invoiced"] == Decimal("1000")
    assert account["total_balance"] == Decimal("0")


def test_mark_overdue_invoices(db):
    student = make_student(db)
    late = make_invoice(db, student, invoice_number="INV1", due_date=date(2026, 1, 10), month=date(2026, 1, 1))
    on_time = make_invoice(db, student, invoice_number="INV2", due_date=date(2026, 3, 10), month=date(2026, 3, 1))

    flagged = crud_fee_invoices.mark_overdue_invoices(db, TENANT, today=date(2026, 2, 1))
    assert flagged == 1

    db.expire_all()
    assert crud_fee_invoices.get_invoice(db, TENANT, late.id).status == InvoiceStatus.OVERDUE.value
    assert crud_fee_invoices.get_invoice(db, TENANT, on_time.id).status == InvoiceStatus.PENDING.value


def test_overdue_invoice_can_still_be_paid(db):
    student = make_student(db)
    invoice = make_invoice(db, student, net_amount="500", due_date=date(2026, 1, 10))
    crud_fee_invoices.mark_overdue_invoices(db, TENANT, today=date(2026, 2, 1))

    updated = crud_fee_invoices.apply_payment(db, TENANT, invoice.id, Decimal("200"))
    db.commit()
    assert updated.status == InvoiceStatus.PARTIAL.value
    assert updated.balance_amount == Decimal("300")


def test_eod_task_runs_across_tenants(db):
    make_invoice(db, make_student(db), invoice_number="INV1", due_date=date(2026, 1, 10))
    make_invoice(db, make_student(db, tenant_id=OTHER_TENANT), tenant_id=OTHER_TENANT,
                 invoice_number="INV1", due_date=date(2026, 1, 10))

    assert eod_tasks.run_eod_tasks(today=date(2026, 2, 1)) == 2


def test_invoice_routes(client, db):
    student = make_student(db)
    response = client.post("/fee-invoices/", json={
        "student_id": student.id, "total_amount": "4500", "month": "2026-05-01"
    })
    assert response.status_code == 201
    invoice = response.json()
    assert invoice["status"] == "pending"
    assert Decimal(invoice["balance_amount"]) == Decimal("4500")

    listed = client.get("/fee-invoices/", params={"student_id": student.id})
    assert [i["id"] for i in listed.json()] == [invoice["id"]]

    assert client.get(f"/fee-invoices/{invoice['id']}").status_code == 200
    other = client.get(f"/fee-invoices/{invoice['id']}", headers={"X-Tenant-ID": OTHER_TENANT})
    assert other.status_code == 404

    duplicate = client.post("/fee-invoices/", json={
        "student_id": student.id, "total_amount": "4500", "month": "2026-05-01"
    })
    assert duplicate.status_code == 409
    assert duplicate.json()["category"] == "conflict"


def test_invoice_creation_requires_finance_group(client, db, user):
    user["cognito:groups"] = ["teacher"]
    student = make_student(db)
    response = client.post("/fee-invoices/", json={"student_id": student.id, "total_amount": "100"})
    assert response.status_code == 403
