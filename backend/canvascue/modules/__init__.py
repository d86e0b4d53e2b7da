"""Feature modules.

This package contains the feature modules of the accounting library:
- tiers: Subscription tier catalog and seeding
- subscription: Subscription accounts, usage accounting, billing cycles
- design_requests: Design request records and live request counts
- invoices: Invoices created from subscriptions
- billing: Billing provider interface, Stripe adapter, resilient gateway
"""
