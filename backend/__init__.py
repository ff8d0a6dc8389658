"""
Backend package for the FinanceGuru API.

This package provides a FastAPI application over a storage layer with two
interchangeable backends: an in-memory store for development and tests and
a relational store (SQLAlchemy, Postgres in production).
"""
