"""Camera-side collaborators."""
