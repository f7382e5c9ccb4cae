"""td CLI command modules."""
