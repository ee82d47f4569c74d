"""Report files for discovery and measurement runs."""

from .writer import ReportWriter, measurement_table, sanitise_label
