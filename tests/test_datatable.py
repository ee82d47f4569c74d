import pytest

from chaindelve.exceptions import TableFormatError
from chaindelve.table import DataTable, decode_table, encode_table


def sample():
    table = DataTable(key_fields=["node", "measurement"], fields=["value", "note"])
    table.add_row(["Vault", "totalAssets", "100", "plain"])
    table.add_row(["Vault", "fees", "1,5", 'says "hi"'])
    table.add_row(["Pool", "memo", "", "two\nlines"])
    return table


def test_encoding_layout():
    text = encode_table(sample())

    assert text.splitlines()[0] == "node:2,measurement,value,note"
    assert '"1,5","says ""hi"""' in text
    assert '"two\nlines"' in text


def test_round_trip():
    table = sample()

    decoded = decode_table(encode_table(table))

    assert decoded == table


def test_round_trip_without_keys():
    table = DataTable(key_fields=[], fields=["a", "b"])
    table.add_row(["1", "2"])

    decoded = decode_table(encode_table(table))

    assert decoded.key_fields == []
    assert decoded.fields == ["a", "b"]
    assert decoded.rows == [["1", "2"]]


def test_empty_table_round_trip():
    table = DataTable(key_fields=[], fields=[])

    assert encode_table(table) == ":0\n"
    assert decode_table(encode_table(table)) == table


def test_round_trip_single_unnamed_key():
    table = DataTable(key_fields=[""], fields=[])
    table.add_row(["v"])

    assert encode_table(table) == ":1\nv\n"
    assert decode_table(encode_table(table)) == table



def test_add_row_checks_width():
    table = DataTable(key_fields=["k"], fields=["v"])

    with pytest.raises(TableFormatError):
        table.add_row(["only-one"])


def test_values_are_stored_as_strings():
    table = DataTable(key_fields=["k"], fields=["v"])
    table.add_row(["a", 12])

    assert table.rows == [["a", "12"]]


def test_duplicate_keys_are_accepted():
    table = DataTable(key_fields=["k"], fields=["v"])
    table.add_row(["a", "1"])
    table.add_row(["a", "2"])

    assert len(table.rows) == 2


def test_decode_rejects_missing_marker():
    with pytest.raises(TableFormatError):
        decode_table("node,value\nVault,1\n")


def test_decode_rejects_too_many_keys():
    with pytest.raises(TableFormatError):
        decode_table("node:3,value\n")


def test_decode_rejects_short_rows():
    with pytest.raises(TableFormatError) as info:
        decode_table("node:1,value\nVault,1\nPool\n")

    assert info.value.details["line"] == 3


def test_decode_rejects_empty_text():
    with pytest.raises(TableFormatError):
        decode_table("")
