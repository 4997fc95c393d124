"""Request-level services: batch generation, history listing, image retrieval."""
