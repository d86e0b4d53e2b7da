"""Design requests, as far as subscription accounting needs them."""
