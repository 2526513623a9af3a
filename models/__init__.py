"""Domain types for sensor samples, schemas and rollup levels."""
