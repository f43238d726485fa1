"""Gateway application package."""
