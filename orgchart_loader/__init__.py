"""Load organisation chart transactions from CSV files into an entity graph service."""

__version__ = "0.1.0"