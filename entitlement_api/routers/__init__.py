"""API routers."""

from . import account
from . import health
from . import notifications
from . import purchases
from . import stripe_billing
from . import stripe_webhook

__all__ = ['account', 'health', 'notifications', 'purchases', 'stripe_billing', 'stripe_webhook']
