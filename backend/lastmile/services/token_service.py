# Overview: Opaque credentials for customer links and driver sessions.

import secrets


def generate_token() -> str:
    """
    Cryptographically secure random token, 64 hex characters.

    Used as Order.access_token and DeliveryRoute.driver_token. Both columns
    are unique, so a collision surfaces as an IntegrityError rather than a
    shared link.
    """
    return secrets.token_hex(32)
