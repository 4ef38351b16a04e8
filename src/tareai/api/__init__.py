"""HTTP surface for the calendar sync core."""
