from __future__ import annotations

from io import BytesIO

import pytest
from db.models.inventory import BoCostHistory
from openpyxl import Workbook
from sqlalchemy import select

from backoffice.api import (
    NO_TRANSACTIONS,
    PARSE_FAILED,
    PARSE_OK,
    create_expense,
    create_sale,
    delete_with_inventory,
    fetch_supplier_invoice,
    parse_statement_upload,
    update_line_items,
)
from backoffice.errors import TransactionNotFoundError
from backoffice.ledger import changes_for_product
from backoffice.mail.invoices import SUPPLIER_NAME_MISSING
from backoffice.models import LineItem
from backoffice.persistence import get_transaction

from tests.helpers.db import add_product, add_supplier
from tests.helpers.mail import (
    HALF_QUANTITY,
    VIVA_RULE,
    FakeEmailSource,
    invoice_html,
    message,
    notification_html,
    product_block,
)


def _xlsx(*rows) -> bytes:
    wb = Workbook()
    for row in rows:
        wb.active.append(list(row))
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_upload_rejects_non_spreadsheets():
    status, body = parse_statement_upload("statement.csv", b"a,b")
    assert status == 400
    assert body == {"message": "Invalid file type. Please upload an Excel file (.xlsx or .xls)"}


def test_upload_reports_unreadable_workbook():
    status, body = parse_statement_upload("statement.xlsx", b"garbage")
    assert status == 500
    assert body["message"] == PARSE_FAILED
    assert body["error"]


def test_upload_without_transactions():
    status, body = parse_statement_upload("statement.xlsx", _xlsx(["Just", "A", "Title"]))
    assert (status, body) == (200, {"transactions": [], "message": NO_TRANSACTIONS})


def test_upload_success():
    data = _xlsx(
        ["Date", "Description", "Card Member", "Amount", "Reference"],
        ["1/2/2024", "Coffee Shop", "R VRIJMOET", "12.34", "REF1"],
    )
    status, body = parse_statement_upload("statement.xlsx", data)

    assert status == 200
    assert body["message"] == PARSE_OK
    assert body["transactions"] == [
        {
            "date": "2024-01-02",
            "description": "Coffee Shop",
            "amount": 12.34,
            "cardNumber": "01001",
            "reference": "REF1",
        }
    ]


def test_fetch_supplier_invoice_matches_products(session):
    add_supplier(
        session,
        "Viva Raw",
        invoice_email="orders@vivaraw.com",
        invoice_subject_pattern=r"Order #(\d+) confirmed",
        extraction_rule=VIVA_RULE,
        price_correction=HALF_QUANTITY,
    )
    turkey = add_product(session, "Viva Raw Pure Turkey 1 lb - Regular", last_purchase_price=4)
    duck = add_product(session, "Viva Raw Duck for Cats 1 lb - Regular", last_purchase_price=4.5)
    invoice = invoice_html(
        product_block("Pure Turkey x 2", "$20.00"),
        product_block("Duck for Cats x 3", "$30.00"),
        product_block("Mystery Meat", "$10.00"),
        total="$50.00",
    )
    source = FakeEmailSource(
        [
            message("n1", notification_html("Viva Raw", "50.00")),
            message(
                "i1", invoice, subject="Order #1001 confirmed", sender="orders@vivaraw.com"
            ),
        ],
        search_ids=["i1"],
    )

    body = fetch_supplier_invoice(session, source, notification_id="n1")

    assert body["extractedSupplier"] == "Viva Raw"
    assert body["isLastEmail"] is True
    assert body["parsedData"]["orderNumber"] == "1001"
    assert body["parsedData"]["totalAmount"] == 48.0
    assert [
        (p["name"], p["productId"], p["quantity"], p["lastKnownPrice"])
        for p in body["parsedData"]["products"]
    ] == [
        ("Pure Turkey", turkey.id, 4, 4.0),
        ("Duck for Cats", duck.id, 6, 4.5),
    ]
    assert body["unmatched"] == ["Mystery Meat"]


def test_fetch_supplier_invoice_passes_errors_through(session):
    source = FakeEmailSource([message("n1", notification_html(None, "10.00"))])
    body = fetch_supplier_invoice(session, source, notification_id="n1")
    assert body == {
        "emailBody": source.messages["n1"].html_body,
        "error": SUPPLIER_NAME_MISSING,
    }
    assert "unmatched" not in body


def test_sale_lifecycle(session):
    turkey = add_product(session, "Turkey", stock=10)
    duck = add_product(session, "Duck", stock=10)

    saved = create_sale(
        session,
        [LineItem(turkey.id, "Turkey", 3)],
        reference="order-77",
        tx_date="2024-03-01",
        amount=30,
    )
    assert saved.transaction.type == "sale"
    assert [r.new_stock for r in saved.inventory] == [7.0]

    edited = [LineItem(turkey.id, "Turkey", 1), LineItem(duck.id, "Duck", 4)]
    update_line_items(session, saved.transaction.id, edited)
    assert (turkey.stock, duck.stock) == (9.0, 6.0)

    results = delete_with_inventory(session, str(saved.transaction.id))
    assert sorted(r.quantity_change for r in results) == [1, 4]
    assert (turkey.stock, duck.stock) == (10.0, 10.0)
    assert get_transaction(session, saved.transaction.id) is None
    assert [c.change_type for c in changes_for_product(session, duck.id)] == [
        "sale",
        "restoration",
    ]


def test_sale_after_deleting_the_newest_transaction_gets_a_fresh_id(session):
    turkey = add_product(session, "Turkey", stock=10)

    first = create_sale(session, [LineItem(turkey.id, "Turkey", 2)])
    first_id = first.transaction.id
    delete_with_inventory(session, first_id)
    assert turkey.stock == 10.0

    second = create_sale(session, [LineItem(turkey.id, "Turkey", 3)])

    assert second.transaction.id != first_id
    (result,) = second.inventory
    assert result.change_recorded is True
    assert result.quantity_change == -3
    assert turkey.stock == 7.0


def test_expense_records_stock_and_cost_history(session):
    turkey = add_product(session, "Turkey", stock=0)
    duck = add_product(session, "Duck", stock=0)

    saved = create_expense(
        session,
        [
            LineItem(turkey.id, "Turkey", 4, unit_price=4.0, total_price=16.0),
            LineItem(duck.id, "Duck", 2),
        ],
        source="email",
        supplier="Viva Raw",
        supplier_order_number="1001",
        tx_date="2024-03-02",
    )

    assert (turkey.stock, duck.stock) == (4.0, 2.0)
    assert [o.invoice_id for o in saved.cost_history] == ["1001"]
    assert turkey.last_purchase_price == 4.0
    assert turkey.total_spent == 16.0
    (entry,) = session.scalars(select(BoCostHistory)).all()
    assert (entry.product_id, entry.source, entry.date.isoformat()) == (
        turkey.id,
        "email",
        "2024-03-02",
    )

    update_line_items(session, saved.transaction.id, [LineItem(turkey.id, "Turkey", 6)])
    assert (turkey.stock, duck.stock) == (6.0, 0.0)


def test_expense_cost_history_falls_back_to_transaction_id(session):
    turkey = add_product(session, "Turkey")
    saved = create_expense(session, [LineItem(turkey.id, "Turkey", 1, unit_price=3.0)])
    assert [o.invoice_id for o in saved.cost_history] == [str(saved.transaction.id)]


def test_missing_transactions(session):
    with pytest.raises(TransactionNotFoundError):
        update_line_items(session, 404, [])
    with pytest.raises(TransactionNotFoundError):
        delete_with_inventory(session, "nope")
