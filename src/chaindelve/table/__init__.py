"""Keyed tables, their CSV encoding and comparison."""

from .datatable import DataTable, decode_table, encode_table
from .diff import diff_tables
