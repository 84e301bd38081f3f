"""Core infrastructure: error taxonomy, logging and app lifespan."""
