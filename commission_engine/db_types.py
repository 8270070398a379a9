"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from sqlalchemy import JSON, Numeric

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# Money columns (2 decimals) and rates (4 decimals)
MoneyType = Numeric(10, 2, asdecimal=True)
RateType = Numeric(10, 4, asdecimal=True)
