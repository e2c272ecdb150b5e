"""Ledger sync backend.

Modules are imported by bare name (``from database import ...``); see
``server.py`` for the HTTP entry point and ``transactions_store.py`` for the
bulk-replace logic.
"""
