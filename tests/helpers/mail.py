"""In-memory email source and canned HTML for the mail tests."""

from __future__ import annotations

import re

from backoffice.mail.sources import EmailMessage

VIVA_RULE = {
    "orderNumber": {"pattern": r"Order #(\d+)"},
    "total": {"pattern": r"Total:\s*\$([\d,]+\.\d{2})"},
    "products": {
        "containerSelector": ".kl-product",
        "nameSelector": ".name",
        "priceSelector": ".price",
        "quantityPattern": {"pattern": r"^(.*?)\s+x\s*(\d+)$"},
    },
}

HALF_QUANTITY = {"discountRate": 0.2, "quantityMultiplier": 2, "priceDivisor": 2.0}


def product_block(name: str, price: str) -> str:
    return (
        '<div class="kl-product">'
        f'<p class="name">{name}</p>'
        f'<div class="kl-table-subblock"><span class="price">{price}</span></div>'
        "</div>"
    )


def invoice_html(*blocks: str, order: str = "1001", total: str = "$50.00") -> str:
    return (
        "<html><body>"
        f"<h1>Order #{order} confirmed</h1>"
        + "".join(blocks)
        + f"<p>Total: {total}</p>"
        "</body></html>"
    )


def notification_html(merchant: str | None, amount: str | None) -> str:
    parts = ["<html><body><h2>Large purchase approved</h2>"]
    if merchant is not None:
        parts.append(
            '<div style="font-size:16px;color:#006fcf;font-weight:bold">'
            f'<p style="margin:0">{merchant}</p></div>'
        )
    if amount is not None:
        parts.append(f"<p>Amount: ${amount}*</p>")
    parts.append("</body></html>")
    return "".join(parts)


_QUERY_TERM_RE = re.compile(r'(?:(\w+):)?("[^"]*"|\S+)')


def _matches_query(msg: EmailMessage, query: str) -> bool:
    # Mailbox search semantics: from: matches the sender, subject: and bare
    # terms match literal text. No regex support.
    for field, raw in _QUERY_TERM_RE.findall(query):
        term = raw.strip('"').lower()
        if field == "from":
            haystack = msg.sender
        elif field == "subject":
            haystack = msg.subject
        else:
            haystack = f"{msg.subject} {msg.html_body}"
        if term not in (haystack or "").lower():
            return False
    return True


class FakeEmailSource:
    """In-memory mailbox searched like a mail server, ``search_ids`` newest first."""

    def __init__(self, messages: list[EmailMessage], *, search_ids: list[str] | None = None):
        self.messages = {m.id: m for m in messages}
        self.search_ids = list(search_ids) if search_ids is not None else []
        self.queries: list[str] = []

    def get_message(self, message_id: str) -> EmailMessage:
        return self.messages[message_id]

    def list_messages(self, query: str, max_results: int) -> list[str]:
        self.queries.append(query)
        hits = [i for i in self.search_ids if _matches_query(self.messages[i], query)]
        return hits[:max_results]


def message(id: str, body: str, *, subject: str = "", sender: str = "") -> EmailMessage:
    return EmailMessage(id=id, subject=subject, sender=sender, html_body=body)
