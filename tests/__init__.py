"""FinLink test suite."""
