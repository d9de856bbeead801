"""Lab Order Automation - portal order submission with eligibility enrichment."""

__version__ = "0.1.0"
