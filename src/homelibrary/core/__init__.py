"""Catalog, identification and batch scanning core."""
