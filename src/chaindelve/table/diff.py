"""
Cell-by-cell comparison of two DataTables.
"""

from typing import Dict, List, Tuple

from .datatable import DataTable


def diff_tables(expected: DataTable, actual: DataTable) -> List[str]:
    """
    Describe every difference between ``expected`` and ``actual``.

    Rows are aligned on the key fields both tables share, unless the tables
    disagree about which common fields are keys, in which case rows are
    compared by position.

    Returns:
        Human readable messages, empty when the tables match
    """
    messages: List[str] = []
    expected_fields = expected.all_fields
    actual_fields = actual.all_fields

    # field -> (expected column, actual column)
    common: Dict[str, Tuple[int, int]] = {}
    usable_keys = True

    for e, name in enumerate(expected_fields):
        is_key = name in expected.key_fields
        if name not in actual_fields:
            messages.append(f"missing {'key ' if is_key else ''}field: {name}")
            continue
        if is_key != (name in actual.key_fields):
            usable_keys = False
            messages.append(f"{'' if is_key else 'not '}expected to be key field: {name}")
        common[name] = (e, actual_fields.index(name))

    for name in actual_fields:
        if name not in expected_fields:
            is_key = name in actual.key_fields
            messages.append(f"extra {'key ' if is_key else ''}field: {name}")

    shared_keys = [name for name in expected.key_fields if name in common]
    if usable_keys and shared_keys:
        pairs = _align_on_keys(expected, actual, [common[k] for k in shared_keys], messages)
    else:
        pairs = [(r, r) for r in range(min(len(expected.rows), len(actual.rows)))]

    for name, (e_col, a_col) in common.items():
        for er, ar in pairs:
            e_value = expected.rows[er][e_col]
            a_value = actual.rows[ar][a_col]
            if e_value != a_value:
                messages.append(f"[{name},{ar}|{er}] mismatch\n    actual: {a_value}\n  expected: {e_value}")

    if len(expected.rows) > len(actual.rows):
        messages.append(f"missing rows {len(actual.rows)}..{len(expected.rows) - 1}")
    if len(actual.rows) > len(expected.rows):
        messages.append(f"extra rows {len(expected.rows)}..{len(actual.rows) - 1}")
    return messages


def _align_on_keys(expected: DataTable, actual: DataTable, columns: List[Tuple[int, int]],
                   messages: List[str]) -> List[Tuple[int, int]]:
    """Pair expected rows with actual rows holding the same key values; first occurrence wins."""
    expected_rows: Dict[tuple, int] = {}
    for er, row in enumerate(expected.rows):
        key = tuple(row[e] for e, _ in columns)
        if key in expected_rows:
            messages.append(f"duplicate key in expected row {er}: {', '.join(key)}")
            continue
        expected_rows[key] = er

    pairs: Dict[int, int] = {}
    for ar, row in enumerate(actual.rows):
        key = tuple(row[a] for _, a in columns)
        er = expected_rows.get(key)
        if er is None:
            continue
        if er in pairs:
            messages.append(f"duplicate key in actual row {ar}: {', '.join(key)}")
            continue
        pairs[er] = ar
    return sorted(pairs.items())
