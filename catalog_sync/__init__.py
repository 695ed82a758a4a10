"""Catalog sync package.

Durable task queue plus asynchronous reconciliation of staged catalog offers
against the marketplace offer API.
"""

__all__: list[str] = []
