"""Domain services built on the calendar layer: the definition store, the edit resolver and reminder planning."""
