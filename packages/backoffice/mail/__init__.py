"""Purchase-notification and supplier-invoice email handling."""

from .extractor import extract_notification_amount, extract_supplier_name, parse_invoice
from .invoices import InvoiceLookup, find_invoice_email, lookup_invoice_for_notification
from .sources import EmailMessage, EmailSource, GmailEmailSource

__all__ = [
    "EmailMessage",
    "EmailSource",
    "GmailEmailSource",
    "InvoiceLookup",
    "extract_notification_amount",
    "extract_supplier_name",
    "find_invoice_email",
    "lookup_invoice_for_notification",
    "parse_invoice",
]
