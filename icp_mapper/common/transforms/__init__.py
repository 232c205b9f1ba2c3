"""SE(3) geometry helpers."""
