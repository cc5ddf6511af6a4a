"""Infrastructure adapters for the vector index, model inference, and persistence."""
