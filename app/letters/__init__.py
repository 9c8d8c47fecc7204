"""Offer-letter generation and delivery.

Resolves the letter template, renders it to PDF with the configured
strategy, persists the artifact, emails it to the recipient and records
the delivery on the recipient's row.  Cleanup of partially written
artifacts runs on every failure path.
"""
