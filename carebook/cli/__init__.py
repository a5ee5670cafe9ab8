"""Command-line interface and periodic trigger entry point."""
