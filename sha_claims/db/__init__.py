"""Database connection management and migrations."""
