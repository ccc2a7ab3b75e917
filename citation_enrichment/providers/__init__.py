"""Catalog providers used by the fetch services."""
