"""Pin-to-deal pipeline."""
