"""Command-line entry points for ethrelay."""
