"""Session-based authentication for the shop."""
