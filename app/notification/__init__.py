"""Outbound notification delivery.

SMTP email with an attached offer letter, and the registration webhook
with its bounded retry policy.
"""
