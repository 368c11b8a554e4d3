import os
import tempfile
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

_tmp_dir = tempfile.mkdtemp(prefix="school_fees_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["LOG_DIR"] = os.path.join(_tmp_dir, "logs")
os.environ["RECEIPT_TEMP_DIR"] = os.path.join(_tmp_dir, "receipts")
os.environ["ENABLE_SCHEDULER"] = "false"

from fastapi.testclient import TestClient  # noqa: E402

import main  # noqa: E402
from database import Base, SessionLocal, engine  # noqa: E402
from models.fee_invoices import FeeInvoice, InvoiceStatus  # noqa: E402
from models.students import Student  # noqa: E402
from utils.auth_utils import get_current_user  # noqa: E402
from utils.mpesa_client import MpesaClient, MpesaConfig, get_mpesa_client  # noqa: E402

TENANT = "school-a"
OTHER_TENANT = "school-b"


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def user():
    return {"sub": "u-1", "email": "bursar@school.test", "cognito:groups": ["admin"]}


@pytest.fixture
def mpesa_client():
    client = MagicMock(spec=MpesaClient)
    client.config = MpesaConfig(
        consumer_key="key",
        consumer_secret="secret",
        short_code="174379",
        passkey="passkey",
        callback_url="https://fees.test/mpesa/callback",
    )
    client.stk_push.return_value = {
        "MerchantRequestID": "29115-34620561-1",
        "CheckoutRequestID": "ws_CO_191220191020363925",
        "ResponseCode": "0",
        "ResponseDescription": "Success. Request accepted for processing",
        "CustomerMessage": "Success. Request accepted for processing",
    }
    return client


@pytest.fixture
def client(user, mpesa_client):
    main.app.dependency_overrides[get_current_user] = lambda: user
    main.app.dependency_overrides[get_mpesa_client] = lambda: mpesa_client
    with TestClient(main.app, headers={"X-Tenant-ID": TENANT}) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def make_student(db, tenant_id=TENANT, admission_number="ADM001", class_name="Grade 4", **kwargs):
    student = Student(
        admission_number=admission_number,
        first_name=kwargs.pop("first_name", "Amani"),
        last_name=kwargs.pop("last_name", "Otieno"),
        class_name=class_name,
        parent_phone=kwargs.pop("parent_phone", "0712345678"),
        tenant_id=tenant_id,
        **kwargs
    )
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


def make_invoice(db, student, net_amount="1000", tenant_id=TENANT, invoice_number="INV26100001",
                 due_date=date(2026, 10, 10), month=date(2026, 10, 1)):
    net = Decimal(net_amount)
    invoice = FeeInvoice(
        invoice_number=invoice_number,
        student_id=student.id,
        month=month,
        total_amount=net,
        discount_amount=Decimal("0"),
        net_amount=net,
        paid_amount=Decimal("0"),
        balance_amount=net,
        due_date=due_date,
        status=InvoiceStatus.PENDING.value,
        tenant_id=tenant_id
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice
