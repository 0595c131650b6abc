"""
Ordering email package.

Modules:
- client: OrderEmailClient for sending order confirmations via the email API
"""
