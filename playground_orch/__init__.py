"""Asynchronous build / test / template job orchestration over Redis streams and S3."""

__version__ = "0.1.0"
