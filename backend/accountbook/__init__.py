"""Application package for the family account book backend.

This package exposes the service, repository and model modules used by
the FastAPI application. Families share a ledger of expenses and incomes,
organised by categories, with budget alerts and dashboard statistics.
Individual modules contain the concrete implementations and documentation.
"""
