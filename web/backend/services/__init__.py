"""Backend services (file-based storage)."""
