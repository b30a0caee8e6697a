"""Settings package: sync configuration file, schema and application paths."""
