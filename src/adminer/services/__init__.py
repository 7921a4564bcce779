"""
Domain services: usage ledger, webhook ingestion, admission and billing reconciliation
"""
