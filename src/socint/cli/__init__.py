"""Command line tools for the SOAR engine."""
