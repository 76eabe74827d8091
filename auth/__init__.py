"""Authentication routes and models."""
