"""Loaders that turn files into raw transaction records."""

from .loaders import LoadedBatch, load_records, read_csv_records, read_json_records

__all__ = ["LoadedBatch", "load_records", "read_csv_records", "read_json_records"]
