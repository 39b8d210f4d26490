from __future__ import annotations

from backoffice.config import StatementConfig
from backoffice.ingest.sheets import rows_from_values
from backoffice.ingest.statement_parser import (
    HEADER_STRATEGIES,
    LAYOUT_STRATEGIES,
    detect_header_row,
    extract_card_number,
    map_columns,
    parse_statement_rows,
)
from backoffice.models import NormalizedTransaction

NO_OVERRIDES = StatementConfig()


def _sheet(*values):
    return rows_from_values(values)


def test_strategy_order_is_explicit():
    assert [s.name for s in HEADER_STRATEGIES] == [
        "literal_date_token",
        "serialized_date_and_reference",
        "row_before_first_date_cell",
    ]
    assert [s.name for s in LAYOUT_STRATEGIES] == [
        "standard",
        "transaction_details_header",
        "transaction_details_scan",
    ]


def test_minimal_sheet_round_trip():
    rows = _sheet(
        ["Date", "Description", "Amount", "Reference"],
        ["1/2/2024", "Coffee Shop", "12.34", "REF1"],
    )

    txs = parse_statement_rows(rows, config=NO_OVERRIDES)

    assert txs == [
        NormalizedTransaction(
            date="2024-01-02", description="Coffee Shop", amount=12.34, reference="REF1"
        )
    ]


def test_parsing_is_a_pure_function_of_the_rows():
    rows = _sheet(
        ["Date", "Description", "Amount", "Reference"],
        ["1/2/2024", "Coffee Shop", "12.34", "REF1"],
        ["1/3/2024", "Feed Store", "-5", "REF2"],
    )
    assert parse_statement_rows(rows, config=NO_OVERRIDES) == parse_statement_rows(
        rows, config=NO_OVERRIDES
    )


def test_header_below_a_preamble():
    rows = [
        {"A": "Prepared for", "B": "JANE DOE"},
        {"A": "Account Number", "B": "XXXX-XXXXXX-31007"},
        {"A": "Date", "B": "Description", "C": "Amount", "D": "Reference"},
        {"A": "1/2/2024", "B": "Coffee Shop", "C": 12.34, "D": "REF1"},
    ]

    assert detect_header_row(rows) == (2, "literal_date_token")
    txs = parse_statement_rows(rows, config=NO_OVERRIDES)
    assert [(t.date, t.description, t.amount, t.reference) for t in txs] == [
        ("2024-01-02", "Coffee Shop", 12.34, "REF1")
    ]


def test_header_found_by_serialized_text():
    rows = [
        {"A": "Statement", "B": "Reference list 1/2024"},
        {"A": "1/2/2024", "B": "x"},
    ]
    assert detect_header_row(rows) == (0, "serialized_date_and_reference")


def test_earliest_row_wins_between_text_strategies():
    rows = [
        {"A": "Statement", "B": "Reference 1/2024"},
        {"A": "Date", "B": "Amount"},
    ]
    assert detect_header_row(rows) == (0, "serialized_date_and_reference")


def test_date_cell_fallback_only_when_no_text_header():
    rows = [
        {"A": "1/2/2024", "B": "Opening balance"},
        {"A": "Date", "B": "Amount"},
    ]
    assert detect_header_row(rows) == (1, "literal_date_token")


def test_header_falls_back_to_row_before_first_date():
    rows = [
        {"A": "Posted", "B": "Payee"},
        {"A": "1/2/2024", "B": "Coffee"},
    ]
    assert detect_header_row(rows) == (0, "row_before_first_date_cell")
    assert detect_header_row([{"A": "nothing"}, {"A": "here"}]) is None


def test_no_header_means_no_transactions():
    assert parse_statement_rows([{"A": "hello"}, {"A": "world"}], config=NO_OVERRIDES) == []
    assert parse_statement_rows([], config=NO_OVERRIDES) == []


def test_skip_rules():
    rows = _sheet(
        ["Date", "Description", "Amount"],
        [None, None, "5.00"],
        ["1/2/2024", "Non numeric", "pending"],
        ["1/3/2024", "Blank amount", None],
        ["1/4/2024", None, "3.00"],
        [None, "No date", "3.00"],
        ["1/5/2024", "Kept", "$1,200.50"],
    )

    txs = parse_statement_rows(rows, config=NO_OVERRIDES)

    assert [(t.date, t.description, t.amount) for t in txs] == [("2024-01-05", "Kept", 1200.5)]


def test_column_aliases_and_optional_fields():
    rows = _sheet(
        [
            "Date",
            "Description",
            "Card Member",
            "Account #",
            "Amount",
            "Extended Details",
            "Appears On Your Statement As",
            "Address",
            "City/State",
            "Zip Code",
            "Country",
            "Reference",
            "Category",
        ],
        [
            "08/29/2025",
            "UBER",
            "JENNY O LEARY",
            "-11016",
            "11.18",
            "Uber Trip",
            "Uber Trip help.uber.com CA",
            "1455 MARKET ST",
            "SAN FRANCISCO",
            94103,
            "UNITED STATES",
            "320252410422442649",
            "Transportation-Taxis & Coach",
        ],
    )

    mapping = map_columns({k: k for k in rows[0]})
    assert mapping["description"] == "Description"
    assert mapping["city"] == "City/State"
    assert "state" not in mapping

    (tx,) = parse_statement_rows(rows, config=NO_OVERRIDES)
    assert tx.date == "2025-08-29"
    assert tx.amount == 11.18
    assert tx.reference == "320252410422442649"
    assert tx.category == "Transportation-Taxis & Coach"
    assert tx.extended_details == "Uber Trip"
    assert tx.address == "1455 MARKET ST"
    assert tx.city_state == "SAN FRANCISCO"
    assert tx.zip_code == "94103"
    assert tx.country == "UNITED STATES"


def test_city_and_state_are_joined():
    rows = _sheet(
        ["Date", "Description", "Amount", "City", "State"],
        ["1/2/2024", "Coffee", "4.50", "SEATTLE", "WA"],
        ["1/3/2024", "Tea", "3.00", "PORTLAND", None],
    )
    txs = parse_statement_rows(rows, config=NO_OVERRIDES)
    assert [t.city_state for t in txs] == ["SEATTLE, WA", "PORTLAND"]


def test_card_number_sources():
    overrides = {"VRIJMOET": "01001"}

    assert extract_card_number({"cm": "JANE DOE 21004"}, "cm", overrides) == "21004"
    assert extract_card_number({"cm": "R VRIJMOET"}, "cm", overrides) == "01001"
    assert (
        extract_card_number({"cm": "JANE DOE", "x": "XXXX-XXXXXX-31007"}, "cm", overrides)
        == "31007"
    )
    assert extract_card_number({"x": "nothing"}, None, overrides) is None


def test_holder_override_comes_from_config():
    rows = _sheet(
        ["Date", "Description", "Card Member", "Amount"],
        ["1/2/2024", "Coffee", "R VRIJMOET", "4.50"],
    )
    (with_override,) = parse_statement_rows(
        rows, config=StatementConfig(card_holder_overrides={"vrijmoet": "01001"})
    )
    (without,) = parse_statement_rows(rows, config=NO_OVERRIDES)
    assert with_override.card_number == "01001"
    assert without.card_number is None


def test_transaction_details_layout_with_date_title():
    rows = [
        {"Transaction Details": "Prepared for", "__EMPTY": "JANE DOE"},
        {"Transaction Details": "Date", "__EMPTY_1": "Amount"},
        {"Transaction Details": "1/5/2024", "__EMPTY": "PET SUPPLY CO", "__EMPTY_1": "45.10"},
        {"Transaction Details": "1/6/2024", "__EMPTY": "FEED STORE", "__EMPTY_1": 12},
        {"Transaction Details": "Total", "__EMPTY_1": "57.10"},
    ]

    txs = parse_statement_rows(rows, config=NO_OVERRIDES)

    assert [(t.date, t.description, t.amount, t.reference) for t in txs] == [
        ("2024-01-05", "PET SUPPLY CO", 45.10, "amex-2"),
        ("2024-01-06", "FEED STORE", 12.0, "amex-3"),
    ]
    assert all(t.reference_is_synthetic for t in txs)
    assert "referenceIsSynthetic" not in txs[0].to_json()


def test_transaction_details_scan_without_title_row():
    rows = [
        {"Transaction Details": "Prepared for", "__EMPTY": "JANE DOE"},
        {"Transaction Details": "1/5/2024", "__EMPTY": "PET SUPPLY CO", "__EMPTY_1": "$45.10"},
        {"Transaction Details": "1/6/2024", "__EMPTY": "FEED STORE"},
    ]

    txs = parse_statement_rows(rows, config=NO_OVERRIDES)

    assert [(t.date, t.description, t.amount, t.reference) for t in txs] == [
        ("2024-01-05", "PET SUPPLY CO", 45.10, "amex-1"),
        ("2024-01-06", "FEED STORE", 0.0, "amex-2"),
    ]
    assert all(t.reference_is_synthetic for t in txs)


def test_json_shape_omits_missing_fields():
    tx = NormalizedTransaction(
        date="2024-01-02", description="Coffee", amount=-1.5, card_number="21004"
    )
    assert tx.to_json() == {
        "date": "2024-01-02",
        "description": "Coffee",
        "amount": -1.5,
        "cardNumber": "21004",
    }
