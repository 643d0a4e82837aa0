"""Local scan simulation."""
