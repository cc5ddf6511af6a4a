"""Application layer: business logic decoupled from the HTTP transport."""
