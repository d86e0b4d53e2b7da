"""Subscription accounts, usage accounting and billing cycle projection."""
