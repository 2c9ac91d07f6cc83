"""Recurrence expansion engine: wall-clock normalization, rule expansion,
occurrence expansion and date grouping."""
