"""Site-specific extractors."""
