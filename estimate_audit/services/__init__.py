"""Services that sit around the comparison engine."""
