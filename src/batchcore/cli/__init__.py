"""Command-line interface (``batchcore``)."""
