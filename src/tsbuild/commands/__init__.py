"""Command helpers for the tsbuild CLI."""
