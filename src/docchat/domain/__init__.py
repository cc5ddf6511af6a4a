"""Domain layer: entities, value objects, and ports."""
