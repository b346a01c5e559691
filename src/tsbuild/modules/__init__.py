"""Self-contained helper modules for tsbuild."""
