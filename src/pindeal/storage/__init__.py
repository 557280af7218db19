"""State persistence."""
