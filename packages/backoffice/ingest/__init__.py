"""Card-statement spreadsheet ingestion."""

from .csv_export import transactions_to_csv
from .sheets import read_first_sheet
from .statement_parser import parse_statement_file, parse_statement_rows

__all__ = [
    "parse_statement_file",
    "parse_statement_rows",
    "read_first_sheet",
    "transactions_to_csv",
]
