"""Infrastructure layer: configuration, persistence and external collaborators."""
