"""HTML email extraction: purchase notifications and supplier invoices.

Two kinds of email pass through here:

- the card issuer's *purchase notification*, from which only the merchant
  (supplier) name and the charged amount are read, with fixed regexes that
  follow the issuer's template;
- the supplier's *invoice*, read with that supplier's
  :class:`~backoffice.models.SupplierExtractionRule`: regex patterns for the
  order number and summary amounts, CSS selectors for the product blocks.

Scraped product rows are corrected with the supplier's
:class:`~backoffice.models.PriceCorrection`, filtered, and de-duplicated by
name before the invoice total is summed.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError

from ..errors import ExtractionRuleError
from ..logging_setup import get_logger
from ..models import (
    ParsedInvoice,
    ParsedLineItem,
    PriceCorrection,
    ProductsRule,
    SupplierExtractionRule,
)
from ..normalizers import parse_amount, round_money
from .corrections import apply_price_correction

logger = get_logger("backoffice.mail.extractor")

# The issuer renders the merchant inside a brand-blue div wrapping a <p>.
SUPPLIER_NAME_RE = re.compile(
    r"<div[^>]*color:#006fcf[^>]*>[^<]*<p[^>]*>([^<]+)</p>", re.IGNORECASE
)
# "$123.45*" - the asterisk is the template's footnote marker.
NOTIFICATION_AMOUNT_RE = re.compile(r"\$(\d+,?\d*\.\d{2})\*")
PRICE_TEXT_RE = re.compile(r"\$([\d,]*\d(?:\.\d{2})?)")
QUANTITY_SUFFIX_RE = re.compile(r"\s+x\s*\d+$", re.IGNORECASE)
PROMO_MARKER = "click here"

# Quantity sits in the second group of typical "Name x 2" patterns.
DEFAULT_QUANTITY_GROUP = 2


def extract_supplier_name(html: str) -> str | None:
    """Merchant name from a purchase-notification body, or ``None``."""

    m = SUPPLIER_NAME_RE.search(html or "")
    if m is None:
        return None
    name = " ".join(m.group(1).split())
    return name or None


def extract_notification_amount(html: str) -> float | None:
    """Charged amount from a purchase-notification body, or ``None``."""

    m = NOTIFICATION_AMOUNT_RE.search(html or "")
    if m is None:
        return None
    return parse_amount(m.group(1))


def _select(root: BeautifulSoup | Tag, selector: str) -> list[Tag]:
    try:
        return list(root.select(selector))
    except SelectorSyntaxError as exc:
        raise ExtractionRuleError(f"invalid CSS selector {selector!r}: {exc}") from exc


def _select_one(root: Tag, selector: str) -> Tag | None:
    found = _select(root, selector)
    return found[0] if found else None


def _displayed_quantity(name: str, rule: ProductsRule) -> int:
    if rule.quantity_pattern is None:
        return 1
    raw = rule.quantity_pattern.extract(name, default_group=DEFAULT_QUANTITY_GROUP)
    if raw is None:
        return 1
    try:
        return max(1, int(raw))
    except ValueError:
        return 1


def extract_line_items(
    html: str,
    rule: ProductsRule,
    *,
    correction: PriceCorrection | None = None,
) -> list[ParsedLineItem]:
    """Scrape, correct, filter and de-duplicate the product rows of an invoice."""

    correction = correction or PriceCorrection()
    soup = BeautifulSoup(html or "", "html.parser")
    items: list[ParsedLineItem] = []
    seen: set[str] = set()

    for container in _select(soup, rule.container_selector):
        name_el = _select_one(container, rule.name_selector)
        if name_el is None:
            continue
        full_name = " ".join(name_el.get_text(" ").split())
        if not full_name:
            continue
        quantity = _displayed_quantity(full_name, rule)
        clean_name = QUANTITY_SUFFIX_RE.sub("", full_name).strip()

        price_el = _select_one(container, rule.price_selector)
        price_match = PRICE_TEXT_RE.search(price_el.get_text() if price_el is not None else "")
        line_total = parse_amount(price_match.group(1)) if price_match else 0.0

        item = apply_price_correction(
            raw_name=clean_name,
            displayed_quantity=quantity,
            line_total=line_total,
            correction=correction,
        )
        if item.unit_price <= 0 or item.total_price <= 0:
            logger.debug("Dropping unpriced item %r", clean_name)
            continue
        if PROMO_MARKER in clean_name.lower():
            continue
        if clean_name in seen:
            continue
        seen.add(clean_name)
        items.append(item)
    return items


def parse_invoice(
    html: str,
    rule: SupplierExtractionRule,
    *,
    correction: PriceCorrection | None = None,
) -> ParsedInvoice:
    """Apply a supplier's extraction rule to an invoice email body.

    Parameters
    ----------
    html:
        Decoded HTML body of the invoice email.
    rule:
        The supplier's extraction rule. Missing parts are skipped: no
        ``order_number`` pattern yields ``None``, no ``products`` rule yields
        no line items.
    correction:
        The supplier's price correction; identity when omitted.
    """

    text = html or ""
    order_number = rule.order_number.extract(text) if rule.order_number else None
    summary = {}
    for key, pattern in rule.summary_patterns().items():
        raw = pattern.extract(text)
        if raw is not None:
            summary[key] = parse_amount(raw)

    line_items: list[ParsedLineItem] = []
    if rule.products is not None:
        line_items = extract_line_items(text, rule.products, correction=correction)

    total = round_money(sum(item.total_price for item in line_items))
    logger.info(
        "Parsed invoice order=%s items=%d total=%.2f", order_number, len(line_items), total
    )
    return ParsedInvoice(
        order_number=order_number,
        line_items=tuple(line_items),
        total_amount=total,
        summary=summary,
    )


__all__ = [
    "NOTIFICATION_AMOUNT_RE",
    "SUPPLIER_NAME_RE",
    "extract_line_items",
    "extract_notification_amount",
    "extract_supplier_name",
    "parse_invoice",
]
