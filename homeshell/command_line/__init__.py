"""Console entry points for homeshell."""
