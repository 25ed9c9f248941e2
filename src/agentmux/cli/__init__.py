"""Command-line interface modules."""
