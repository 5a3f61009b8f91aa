"""Runnable example jobs (``batchcore run examples.simple_job:simple_job``)."""
