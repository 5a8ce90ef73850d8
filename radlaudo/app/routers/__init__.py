"""Routers for the radlaudo API."""
