"""Command line interface for hotserve."""
