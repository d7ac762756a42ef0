"""Business services for the SHA claims workflow."""
