"""fieldsync - offline photo sync and crew scheduling utilities for field teams."""

__version__ = "0.1.0"
