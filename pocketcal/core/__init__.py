"""Clock and zone helpers shared by the calendar and domain layers."""
