"""
Keyed string tables and their CSV text encoding.

The header row lists the key fields then the value fields; the first header
cell carries a ``:n`` suffix giving the number of key fields, e.g.::

    node:2,measurement,value
    Vault,totalAssets,100
"""

import csv
import io
import re
from dataclasses import dataclass, field
from typing import Any, List, Sequence

from ..exceptions import TableFormatError

KEY_COUNT_MARKER = re.compile(r"^(.*):\s*(\d+)$", re.DOTALL)


@dataclass
class DataTable:
    key_fields: List[str]
    fields: List[str]
    rows: List[List[str]] = field(default_factory=list)

    @property
    def all_fields(self) -> List[str]:
        return self.key_fields + self.fields

    @property
    def width(self) -> int:
        return len(self.key_fields) + len(self.fields)

    def add_row(self, values: Sequence[Any]) -> None:
        """
        Append a row. Duplicate keys are accepted; the diff reports them.

        Raises:
            TableFormatError: If the row does not have one value per field
        """
        if len(values) != self.width:
            raise TableFormatError(f"row has {len(values)} values, table has {self.width} fields")
        self.rows.append([str(v) for v in values])

    def key_of(self, row: Sequence[str]) -> tuple:
        return tuple(row[:len(self.key_fields)])


def encode_table(table: DataTable) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    header = table.all_fields
    marker = f":{len(table.key_fields)}"
    writer.writerow([header[0] + marker] + header[1:] if header else [marker])
    writer.writerows(table.rows)
    return buffer.getvalue()


def decode_table(text: str) -> DataTable:
    """
    Decode the output of encode_table.

    Raises:
        TableFormatError: If the header has no key count marker or a row has the wrong width
    """
    reader = csv.reader(io.StringIO(text))
    header = next(reader, None)
    if not header:
        raise TableFormatError("missing header row", 1)

    match = KEY_COUNT_MARKER.match(header[0])
    if not match:
        raise TableFormatError(f"first header cell has no key count: {header[0]}", 1)

    first, key_count = match.group(1), int(match.group(2))
    if first == "" and len(header) == 1 and key_count == 0:
        names = []
    else:
        names = [first] + header[1:]
    if key_count > len(names):
        raise TableFormatError(f"{key_count} key fields declared but only {len(names)} fields", 1)

    table = DataTable(key_fields=names[:key_count], fields=names[key_count:])
    for row in reader:
        if not row:
            continue
        try:
            table.add_row(row)
        except TableFormatError as e:
            raise TableFormatError(e.message, reader.line_num) from e
    return table
