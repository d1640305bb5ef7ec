"""Command-line batch jobs."""
