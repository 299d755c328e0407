"""Entitlement API.

FastAPI backend that decides whether a user has premium access, reconciling
App Store receipts and notifications, Google Play purchases and developer
notifications, and Stripe subscriptions into one record per user.

Security: Firebase Auth tokens required for client endpoints; platform
callbacks are verified by signature.
"""
