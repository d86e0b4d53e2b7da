"""Subscription tier catalog."""
