from __future__ import annotations

from backoffice.ingest.csv_export import CSV_HEADER, transactions_to_csv
from backoffice.models import NormalizedTransaction


def test_header_only_for_empty_input():
    assert transactions_to_csv([]) == CSV_HEADER
    assert CSV_HEADER == (
        "Date,Description,Amount,Category,Card Number,Reference,"
        "Extended Details,Address,City/State,Zip Code,Country"
    )


def test_rows_quote_text_fields_and_keep_amount_sign():
    txs = [
        NormalizedTransaction(
            date="2024-01-02",
            description='Joe\'s "Best" Coffee',
            amount=-12.34,
            category="Restaurant-Coffee",
            card_number="31007",
            reference="320240020123",
            extended_details="line one",
            address="1 Main St",
            city_state="SEATTLE, WA",
            zip_code="98109",
            country="UNITED STATES",
        ),
        NormalizedTransaction(date="2024-01-03", description="Feed", amount=40.0),
    ]

    lines = transactions_to_csv(txs).split("\n")

    assert lines[0] == CSV_HEADER
    assert lines[1] == (
        '2024-01-02,"Joe\'s ""Best"" Coffee",-12.34,"Restaurant-Coffee",31007,'
        '320240020123,"line one","1 Main St","SEATTLE, WA",98109,UNITED STATES'
    )
    assert lines[2] == '2024-01-03,"Feed",40,"",,,"","","",,'
    assert len(lines) == 3
