"""Subscription invoices."""
