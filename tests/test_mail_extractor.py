from __future__ import annotations

import pytest

from backoffice.errors import ExtractionRuleError
from backoffice.mail.corrections import apply_price_correction
from backoffice.mail.extractor import (
    extract_line_items,
    extract_notification_amount,
    extract_supplier_name,
    parse_invoice,
)
from backoffice.models import ParsedLineItem, PriceCorrection, ProductsRule, SupplierExtractionRule

from tests.helpers.mail import (
    HALF_QUANTITY,
    VIVA_RULE,
    invoice_html,
    notification_html,
    product_block,
)


def test_notification_fields():
    html = notification_html("  Viva   Raw ", "1,234.56")
    assert extract_supplier_name(html) == "Viva Raw"
    assert extract_notification_amount(html) == 1234.56


def test_notification_without_fields():
    html = notification_html(None, None)
    assert extract_supplier_name(html) is None
    assert extract_notification_amount(html) is None
    # An amount without the footnote marker is not the charged amount.
    assert extract_notification_amount("<p>$12.00</p>") is None


def test_identity_correction():
    item = apply_price_correction(
        raw_name="Pure Turkey", displayed_quantity=2, line_total=20.0, correction=PriceCorrection()
    )
    assert item == ParsedLineItem("Pure Turkey", 2, 10.0, 20.0)


def test_half_quantity_correction():
    correction = PriceCorrection.half_quantity_template()
    item = apply_price_correction(
        raw_name="Pure Turkey", displayed_quantity=3, line_total=30.0, correction=correction
    )
    assert item == ParsedLineItem("Pure Turkey", 6, 4.0, 24.0)


def test_correction_guards_zero_quantity():
    item = apply_price_correction(
        raw_name="x", displayed_quantity=0, line_total=5.0, correction=PriceCorrection()
    )
    assert (item.quantity, item.unit_price, item.total_price) == (1, 5.0, 5.0)


def test_parse_invoice_with_half_quantity_template():
    html = invoice_html(
        product_block("Pure Turkey x 2", "$20.00"),
        product_block("Duck for Cats x 3", "$30.00"),
        total="$40.00",
    )
    rule = SupplierExtractionRule.model_validate(VIVA_RULE)

    parsed = parse_invoice(html, rule, correction=PriceCorrection.model_validate(HALF_QUANTITY))

    assert parsed.order_number == "1001"
    assert parsed.line_items == (
        ParsedLineItem("Pure Turkey", 4, 4.0, 16.0),
        ParsedLineItem("Duck for Cats", 6, 4.0, 24.0),
    )
    assert parsed.total_amount == 40.0
    assert parsed.summary == {"total": 40.0}
    assert parsed.to_json()["products"][0] == {
        "name": "Pure Turkey",
        "quantity": 4,
        "unitPrice": 4.0,
        "totalPrice": 16.0,
    }


def test_line_items_are_filtered_and_deduplicated():
    html = invoice_html(
        product_block("Pure Turkey x 2", "$20.00"),
        product_block("Click here for 10% off", "$5.00"),
        product_block("Free Sample", "$0.00"),
        product_block("Pure Turkey x 1", "$10.00"),
        product_block("Chicken Hearts", "$7.50"),
        '<div class="kl-product"><span class="price">$3.00</span></div>',
    )
    rule = ProductsRule.model_validate(VIVA_RULE["products"])

    items = extract_line_items(html, rule)

    assert items == [
        ParsedLineItem("Pure Turkey", 2, 10.0, 20.0),
        ParsedLineItem("Chicken Hearts", 1, 7.5, 7.5),
    ]


def test_rule_without_products_or_order_pattern():
    rule = SupplierExtractionRule.model_validate({})
    parsed = parse_invoice(invoice_html(product_block("Pure Turkey x 2", "$20.00")), rule)
    assert parsed.order_number is None
    assert parsed.line_items == ()
    assert parsed.total_amount == 0.0


def test_named_groups_in_stored_patterns():
    rule = SupplierExtractionRule.model_validate(
        {"orderNumber": {"pattern": r"order (?<num>[A-Z]+-\d+)", "flags": "gi"}}
    )
    parsed = parse_invoice("<p>ORDER ab-12 shipped</p>", rule)
    assert parsed.order_number == "ab-12"


def test_invalid_selector_raises():
    rule = ProductsRule(container_selector="div[", name_selector=".name")
    with pytest.raises(ExtractionRuleError):
        extract_line_items("<div></div>", rule)


def test_invalid_pattern_raises():
    rule = SupplierExtractionRule.model_validate({"orderNumber": {"pattern": "Order #("}})
    with pytest.raises(ExtractionRuleError):
        parse_invoice("<p>Order #1</p>", rule)
