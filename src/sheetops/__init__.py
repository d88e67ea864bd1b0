"""sheetops -- hierarchical sheet duplication and reordering engine."""

__version__ = "0.1.0"
