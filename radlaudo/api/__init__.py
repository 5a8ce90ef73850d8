"""API modules for radlaudo."""
