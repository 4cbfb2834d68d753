"""Core layer: shared models, errors and collaborator protocols."""
