"""Web presentation of stored reviews."""
