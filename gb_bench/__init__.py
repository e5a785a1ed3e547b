"""Storage benchmark driver for grid-bench."""
