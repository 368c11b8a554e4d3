from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import OTHER_TENANT, TENANT, make_invoice, make_student
from crud import fee_discounts as crud_fee_discounts
from crud import fee_invoices as crud_fee_invoices
from crud import fee_structures as crud_fee_structures
from models.fee_discounts import DiscountType
from schemas.fee_discounts import FeeDiscountCreate, StudentDiscountCreate
from schemas.fee_invoices import BulkInvoiceCreate, FeeInvoiceCreate
from schemas.fee_structures import FeeStructureCreate, FeeStructureUpdate
from utils.errors import ConflictError, NotFoundError, ValidationError


def add_structure(db, name, amount, class_name=None, tenant_id=TENANT):
    return crud_fee_structures.create_fee_structure(
        db, tenant_id, FeeStructureCreate(name=name, amount=Decimal(amount), class_name=class_name),
        created_by="bursar"
    )


def add_discount(db, name, discount_type, value, tenant_id=TENANT):
    return crud_fee_discounts.create_discount(
        db, tenant_id, FeeDiscountCreate(name=name, discount_type=discount_type, value=Decimal(value)),
        created_by="bursar"
    )


def grant(db, discount, student, valid_from=None, valid_until=None):
    return crud_fee_discounts.apply_discount_to_student(
        db, TENANT, discount.id,
        StudentDiscountCreate(student_id=student.id, reason="sibling", valid_from=valid_from, valid_until=valid_until),
        applied_by="bursar"
    )


def test_class_fee_total_includes_all_class_lines(db):
    add_structure(db, "Tuition", "8000", class_name="Grade 4")
    add_structure(db, "Tuition", "9000", class_name="Grade 5")
    add_structure(db, "Activity", "1500")
    retired = add_structure(db, "Lunch", "3000")
    add_structure(db, "Activity", "700", tenant_id=OTHER_TENANT)
    crud_fee_structures.update_fee_structure(db, TENANT, retired.id, FeeStructureUpdate(is_active=False), updated_by="bursar")

    assert crud_fee_structures.get_class_fee_total(db, TENANT, "Grade 4") == Decimal("9500")
    assert crud_fee_structures.get_class_fee_total(db, TENANT, "Grade 5") == Decimal("10500")
    assert crud_fee_structures.get_class_fee_total(db, TENANT, None) == Decimal("1500")
    assert crud_fee_structures.get_class_fee_total(db, OTHER_TENANT, "Grade 4") == Decimal("700")


def test_update_unknown_fee_structure(db):
    with pytest.raises(NotFoundError):
        crud_fee_structures.update_fee_structure(db, TENANT, 99, FeeStructureUpdate(amount=Decimal("1")), updated_by="bursar")


def test_invoice_total_comes_from_fee_structures(db):
    student = make_student(db)
    add_structure(db, "Tuition", "8000", class_name="Grade 4")
    add_structure(db, "Activity", "1500")

    invoice = crud_fee_invoices.generate_invoice(
        db, TENANT, FeeInvoiceCreate(student_id=student.id, month=date(2026, 1, 1)), created_by="bursar"
    )

    assert invoice.total_amount == Decimal("9500")
    assert invoice.discount_amount == Decimal("0")
    assert invoice.net_amount == invoice.balance_amount == Decimal("9500")


def test_invoice_without_fee_structure_is_rejected(db):
    student = make_student(db)
    with pytest.raises(ValidationError, match="No active fee structure"):
        crud_fee_invoices.generate_invoice(db, TENANT, FeeInvoiceCreate(student_id=student.id), created_by="bursar")


@pytest.mark.parametrize("discount_type, value, expected", [
    (DiscountType.PERCENTAGE, "10", Decimal("950.00")),
    (DiscountType.FIXED, "2000", Decimal("2000")),
    (DiscountType.FIXED, "50000", Decimal("9500")),
])
def test_student_discount_is_deducted(db, discount_type, value, expected):
    student = make_student(db)
    add_structure(db, "Tuition", "9500", class_name="Grade 4")
    grant(db, add_discount(db, "Sibling", discount_type, value), student)

    invoice = crud_fee_invoices.generate_invoice(
        db, TENANT, FeeInvoiceCreate(student_id=student.id, month=date(2026, 1, 1)), created_by="bursar"
    )

    assert invoice.discount_amount == expected
    assert invoice.net_amount == Decimal("9500") - expected


def test_explicit_discount_overrides_assigned_discounts(db):
    student = make_student(db)
    grant(db, add_discount(db, "Bursary", DiscountType.FIXED, "3000"), student)

    invoice = crud_fee_invoices.generate_invoice(
        db, TENANT,
        FeeInvoiceCreate(student_id=student.id, total_amount=Decimal("5000"), discount_amount=Decimal("0")),
        created_by="bursar"
    )
    assert invoice.net_amount == Decimal("5000")


def test_discount_applies_only_inside_its_window(db):
    student = make_student(db)
    grant(db, add_discount(db, "Term 1 bursary", DiscountType.FIXED, "1000"), student,
          valid_from=date(2026, 1, 1), valid_until=date(2026, 3, 31))

    def bill(month):
        return crud_fee_invoices.generate_invoice(
            db, TENANT, FeeInvoiceCreate(student_id=student.id, total_amount=Decimal("5000"), month=month),
            created_by="bursar"
        )

    assert bill(date(2026, 2, 1)).discount_amount == Decimal("1000")
    assert bill(date(2026, 5, 1)).discount_amount == Decimal("0")


def test_apply_discount_checks(db):
    student = make_student(db)
    discount = add_discount(db, "Staff child", DiscountType.PERCENTAGE, "50")

    with pytest.raises(NotFoundError):
        crud_fee_discounts.apply_discount_to_student(
            db, TENANT, discount.id, StudentDiscountCreate(student_id=999), applied_by="bursar"
        )
    with pytest.raises(NotFoundError):
        crud_fee_discounts.apply_discount_to_student(
            db, OTHER_TENANT, discount.id, StudentDiscountCreate(student_id=student.id), applied_by="bursar"
        )
    with pytest.raises(ValidationError):
        grant(db, discount, student, valid_from=date(2026, 5, 1), valid_until=date(2026, 1, 1))

    discount.is_active = False
    db.commit()
    with pytest.raises(ConflictError):
        grant(db, discount, student)


def test_percentage_discount_is_capped():
    with pytest.raises(PydanticValidationError):
        FeeDiscountCreate(name="Too generous", discount_type=DiscountType.PERCENTAGE, value=Decimal("150"))


def test_bulk_invoices_use_class_fees_and_discounts(db):
    first = make_student(db, admission_number="ADM001", class_name="Grade 4")
    second = make_student(db, admission_number="ADM002", class_name="Grade 5", first_name="Wanjiru")
    add_structure(db, "Tuition", "8000", class_name="Grade 4")
    add_structure(db, "Activity", "1000")
    grant(db, add_discount(db, "Sibling", DiscountType.PERCENTAGE, "10"), first)

    result = crud_fee_invoices.generate_bulk_invoices(
        db, TENANT, BulkInvoiceCreate(due_date=date(2026, 1, 15)), created_by="bursar"
    )

    amounts = {item["student_name"]: item["amount"] for item in result["invoices"]}
    assert amounts[first.full_name] == Decimal("8100")
    assert amounts[second.full_name] == Decimal("1000")
    assert result["errors_count"] == 0


def test_fee_statistics(db):
    paid = make_invoice(db, make_student(db, admission_number="ADM001"), net_amount="1000", invoice_number="INV1")
    partial = make_invoice(db, make_student(db, admission_number="ADM002", class_name="Grade 5"),
                           net_amount="3000", invoice_number="INV2")
    make_invoice(db, make_student(db, admission_number="ADM003"), net_amount="1000", invoice_number="INV3",
                 due_date=date(2026, 1, 10), month=date(2026, 1, 1))
    crud_fee_invoices.apply_payment(db, TENANT, paid.id, Decimal("1000"))
    crud_fee_invoices.apply_payment(db, TENANT, partial.id, Decimal("1000"))
    db.commit()
    crud_fee_invoices.mark_overdue_invoices(db, TENANT, today=date(2026, 2, 1))

    stats = crud_fee_invoices.get_fee_statistics(db, TENANT)
    assert stats["total_invoices"] == 3
    assert stats["total_amount"] == Decimal("5000")
    assert stats["total_collected"] == Decimal("2000")
    assert stats["total_pending"] == Decimal("3000")
    assert (stats["paid_invoices"], stats["pending_invoices"], stats["overdue_invoices"]) == (1, 1, 1)
    assert stats["collection_percentage"] == 40.0

    grade_5 = crud_fee_invoices.get_fee_statistics(db, TENANT, class_name="Grade 5")
    assert grade_5["total_invoices"] == 1
    assert grade_5["collection_percentage"] == 33.33

    january = crud_fee_invoices.get_fee_statistics(db, TENANT, end_month=date(2026, 1, 31))
    assert january["total_invoices"] == 1


def test_fee_statistics_without_invoices(db):
    stats = crud_fee_invoices.get_fee_statistics(db, OTHER_TENANT)
    assert stats["total_invoices"] == 0
    assert stats["collection_percentage"] == 0


def test_fee_structure_and_discount_routes(client, db):
    student = make_student(db)

    created = client.post("/fee-structures/", json={"name": "Tuition", "amount": "7000", "class_name": "Grade 4"})
    assert created.status_code == 201
    structure_id = created.json()["id"]
    assert client.get("/fee-structures/", params={"class_name": "Grade 4"}).json()[0]["id"] == structure_id
    assert client.get(f"/fee-structures/{structure_id}", headers={"X-Tenant-ID": OTHER_TENANT}).status_code == 404

    updated = client.put(f"/fee-structures/{structure_id}", json={"amount": "7500"})
    assert Decimal(updated.json()["amount"]) == Decimal("7500")

    discount = client.post("/fee-discounts/", json={"name": "Sibling", "discount_type": "fixed", "value": "500"})
    assert discount.status_code == 201
    assigned = client.post(f"/fee-discounts/{discount.json()['id']}/students", json={"student_id": student.id})
    assert assigned.status_code == 201
    assert assigned.json()["discount"]["name"] == "Sibling"
    assert len(client.get(f"/fee-discounts/students/{student.id}").json()) == 1

    invoice = client.post("/fee-invoices/", json={"student_id": student.id, "month": "2026-06-01"})
    assert invoice.status_code == 201
    assert Decimal(invoice.json()["net_amount"]) == Decimal("7000")

    stats = client.get("/fee-invoices/statistics")
    assert stats.status_code == 200
    assert stats.json()["total_invoices"] == 1


def test_fee_structure_writes_require_finance_group(client, user):
    user["cognito:groups"] = ["teacher"]
    assert client.post("/fee-structures/", json={"name": "Tuition", "amount": "7000"}).status_code == 403
    assert client.get("/fee-invoices/statistics").status_code == 403
