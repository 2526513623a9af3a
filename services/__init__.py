"""Parsing, rollup and downsampling services."""
