"""Product catalog microservice."""
