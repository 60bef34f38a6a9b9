"""Key-value storage."""
