"""Sorting and table rendering for scan results."""

from __future__ import annotations

import sys
from typing import Iterable, List, Optional, TextIO

from tabulate import tabulate

from .models import FileMetadataRecord

HEADERS = ("Name", "Version", "PublicKeyToken", "Path")


def sort_records(records: Iterable[FileMetadataRecord]) -> List[FileMetadataRecord]:
    """Drop failed records and order the rest by name, newest version, path."""
    survivors = [record for record in records if not record.is_error]
    # Stable passes from the least significant key up; equal rows keep input order.
    survivors.sort(key=lambda record: record.relative_path)
    survivors.sort(key=lambda record: tuple(record.version or ()), reverse=True)
    survivors.sort(key=lambda record: record.name)
    return survivors


def render_table(records: Iterable[FileMetadataRecord]) -> str:
    rows = [
        [record.name, record.version_text, record.public_key_token_hex, record.relative_path]
        for record in records
    ]
    return tabulate(rows, headers=list(HEADERS), tablefmt="simple", disable_numparse=True)


def print_table(records: Iterable[FileMetadataRecord], stream: Optional[TextIO] = None) -> None:
    """Sort ``records`` and write the rendered table to ``stream`` (stdout by default)."""
    output = stream if stream is not None else sys.stdout
    output.write(render_table(sort_records(records)))
    output.write("\n")
