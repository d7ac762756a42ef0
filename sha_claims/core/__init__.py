"""Core enumerations and domain exceptions."""
