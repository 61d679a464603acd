"""Clock, randomness, decimal precision and logging helpers."""
