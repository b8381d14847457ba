"""Database and helper utilities."""
