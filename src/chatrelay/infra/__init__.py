"""Infrastructure: database, logging, tracing, lifespan wiring."""
