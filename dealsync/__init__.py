"""
dealsync - incremental crypto fundraising deal ingestion.
"""

__version__ = "0.1.0"
