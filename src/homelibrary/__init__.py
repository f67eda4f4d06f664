"""Home library cataloger: shelves, books and photo-based batch scanning."""

__version__ = "0.1.0"
