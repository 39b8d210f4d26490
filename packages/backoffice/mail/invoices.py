"""Find the supplier invoice behind a card purchase notification.

The notification names the merchant and the charged amount. The merchant is
resolved to a supplier (learned mapping first, then name/alias lookup), and
the supplier's invoice mailbox is searched for a message whose subject
matches the supplier's subject pattern and whose body mentions the amount.
The ``skip`` parameter lets a reviewer step to the next candidate when the
first one is the wrong invoice.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from db.models.inventory import BoSupplier
from sqlalchemy.orm import Session

from ..logging_setup import get_logger
from ..mappings import find_mapping, upsert_mapping
from ..models import MappingType, ParsedInvoice
from ..suppliers import extraction_rule_for, find_by_name_or_alias, price_correction_for
from .extractor import extract_notification_amount, extract_supplier_name, parse_invoice
from .sources import EmailMessage, EmailSource

logger = get_logger("backoffice.mail.invoices")

DEFAULT_MAX_RESULTS = 100

SUPPLIER_NAME_MISSING = "Could not find supplier name in email"
SUPPLIER_UNKNOWN = "Supplier not found in database"
SUPPLIER_NOT_CONFIGURED = "Supplier has no invoice email configured"
AMOUNT_MISSING = "Could not find amount in email"
NO_SUPPLIER_EMAILS = "No emails found from this supplier"
NO_MORE_INVOICES = "No more matching invoice emails found from this supplier"


def amount_variants(amount: float) -> list[str]:
    """Ways an amount may be printed: with/without cents and thousands separators."""

    value = abs(amount)
    whole = math.floor(value)
    variants = [f"{value:,.2f}", f"{value:.2f}", f"{whole:,}", str(whole)]
    return list(dict.fromkeys(variants))


def body_mentions_amount(body: str, amount: float) -> bool:
    for variant in amount_variants(amount):
        pattern = r"(?<![\d.,])" + re.escape(variant) + r"(?![\d,]|\.\d)"
        if re.search(pattern, body or ""):
            return True
    return False


def build_invoice_query(invoice_email: str) -> str:
    """Mailbox query for a supplier's invoices.

    Only the sender is filtered server-side. The subject pattern is a regular
    expression and the amount may be printed several ways, and mail search
    would take either one as a literal phrase, so both are checked in
    :func:`find_invoice_email` instead.
    """

    return f"from:{invoice_email}"


@dataclass(frozen=True, slots=True)
class InvoiceSearchResult:
    message: EmailMessage | None
    is_last_email: bool
    candidates: int


def find_invoice_email(
    source: EmailSource,
    *,
    invoice_email: str,
    subject_pattern: str,
    amount: float,
    skip: int = 0,
    max_results: int = DEFAULT_MAX_RESULTS,
) -> InvoiceSearchResult:
    """Return the ``skip``-th (0-based) matching invoice, newest first.

    The mailbox is queried by sender only. A message matches when its
    subject matches ``subject_pattern`` (case-insensitive search) and its
    body mentions ``amount``.
    ``is_last_email`` is true when no later candidate remains in the page.
    """

    subject_re = re.compile(subject_pattern, re.IGNORECASE)
    ids = source.list_messages(build_invoice_query(invoice_email), max_results)
    skipped = 0
    for position, message_id in enumerate(ids):
        message = source.get_message(message_id)
        if not subject_re.search(message.subject or ""):
            continue
        if not body_mentions_amount(message.html_body, amount):
            continue
        if skipped < skip:
            skipped += 1
            continue
        return InvoiceSearchResult(
            message=message,
            is_last_email=position + 1 >= len(ids),
            candidates=len(ids),
        )
    return InvoiceSearchResult(message=None, is_last_email=True, candidates=len(ids))


@dataclass(frozen=True, slots=True)
class InvoiceLookup:
    email_body: str
    extracted_supplier: str | None = None
    supplier_id: int | None = None
    parsed: ParsedInvoice | None = None
    amount: float | None = None
    is_last_email: bool | None = None
    invoice_message_id: str | None = None
    error: str | None = None

    def to_json(self) -> dict[str, Any]:
        out: dict[str, Any] = {"emailBody": self.email_body}
        if self.extracted_supplier is not None:
            out["extractedSupplier"] = self.extracted_supplier
        if self.parsed is not None:
            out["parsedData"] = self.parsed.to_json()
        if self.amount is not None:
            out["amount"] = self.amount
        if self.is_last_email is not None:
            out["isLastEmail"] = self.is_last_email
        if self.error is not None:
            out["error"] = self.error
        return out


def _resolve_supplier(session: Session, merchant: str) -> BoSupplier | None:
    mapping = find_mapping(session, MappingType.EMAIL_SUPPLIER, merchant)
    if mapping is not None and mapping.target_id is not None:
        try:
            supplier = session.get(BoSupplier, int(mapping.target_id))
        except ValueError:
            supplier = None
        if supplier is not None:
            return supplier
    return find_by_name_or_alias(session, merchant)


def lookup_invoice_for_notification(
    session: Session,
    source: EmailSource,
    *,
    notification_id: str,
    skip: int = 0,
    amount: float | None = None,
) -> InvoiceLookup:
    """Go from a purchase-notification message to the parsed supplier invoice.

    ``amount`` overrides the amount read from the notification (the stored
    transaction amount, when the caller has one). Expected misses are
    reported through :attr:`InvoiceLookup.error`; mail and database errors
    propagate.
    """

    notification = source.get_message(notification_id)
    body = notification.html_body
    merchant = extract_supplier_name(body)
    if merchant is None:
        return InvoiceLookup(email_body=body, error=SUPPLIER_NAME_MISSING)

    supplier = _resolve_supplier(session, merchant)
    if supplier is None:
        logger.info("Merchant %r is not a known supplier", merchant)
        return InvoiceLookup(email_body=body, extracted_supplier=merchant, error=SUPPLIER_UNKNOWN)
    upsert_mapping(
        session, MappingType.EMAIL_SUPPLIER, merchant, supplier.name, target_id=supplier.id
    )

    if amount is None:
        amount = extract_notification_amount(body)
    if amount is None:
        return InvoiceLookup(
            email_body=body,
            extracted_supplier=supplier.name,
            supplier_id=supplier.id,
            error=AMOUNT_MISSING,
        )
    if not supplier.invoice_email or not supplier.invoice_subject_pattern:
        return InvoiceLookup(
            email_body=body,
            extracted_supplier=supplier.name,
            supplier_id=supplier.id,
            amount=amount,
            error=SUPPLIER_NOT_CONFIGURED,
        )

    found = find_invoice_email(
        source,
        invoice_email=supplier.invoice_email,
        subject_pattern=supplier.invoice_subject_pattern,
        amount=amount,
        skip=skip,
    )
    if found.message is None:
        return InvoiceLookup(
            email_body=body,
            extracted_supplier=supplier.name,
            supplier_id=supplier.id,
            amount=amount,
            is_last_email=True,
            error=NO_SUPPLIER_EMAILS if found.candidates == 0 else NO_MORE_INVOICES,
        )

    invoice = found.message
    rule = extraction_rule_for(supplier)
    parsed = (
        parse_invoice(invoice.html_body, rule, correction=price_correction_for(supplier))
        if rule is not None
        else None
    )
    logger.info(
        "Notification %s matched invoice %s from %s (skip=%d)",
        notification_id,
        invoice.id,
        supplier.name,
        skip,
    )
    return InvoiceLookup(
        email_body=invoice.html_body,
        extracted_supplier=supplier.name,
        supplier_id=supplier.id,
        parsed=parsed,
        amount=amount,
        is_last_email=found.is_last_email,
        invoice_message_id=invoice.id,
    )


__all__ = [
    "InvoiceLookup",
    "InvoiceSearchResult",
    "amount_variants",
    "body_mentions_amount",
    "build_invoice_query",
    "find_invoice_email",
    "lookup_invoice_for_notification",
]
