"""Command-generation backends and engine routing."""
