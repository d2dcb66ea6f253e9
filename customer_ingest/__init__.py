"""
Customer Batch Ingestion Pipeline

Streams pipe-delimited customer files, validates each record, groups the
valid ones into fixed-size batches and delivers them to a database sink
through a bounded handoff with backpressure.
"""

__version__ = "0.1.0"
