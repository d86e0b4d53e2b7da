"""CanvasCue subscription accounting.

Library behind the CanvasCue design-request SaaS that tracks what each
client is subscribed to and how much of it they have used.

Modules:
    - core: Configuration, database, logging, tracing, metrics, retry
    - modules.tiers: Subscription tier catalog
    - modules.subscription: Accounts, usage accounting, billing cycles
    - modules.design_requests: Live design request counting
    - modules.invoices: Invoice generation and payment tracking
    - modules.billing: Billing provider adapter (Stripe)
"""

__version__ = "0.1.0"
