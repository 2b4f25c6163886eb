"""Entity deduplication and merge services."""
