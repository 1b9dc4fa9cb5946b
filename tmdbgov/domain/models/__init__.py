"""Domain models (value objects and entities) for the request governor."""
