"""External services: persistence backends."""
