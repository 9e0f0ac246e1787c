"""Token generation for voucher and purchase identifiers.

Identifiers and redemption tokens are drawn from the operating system's
CSPRNG. Nothing is derived from the data being labelled, so knowing a voucher
id, a buyer id or a purchase time gives no handle on the redemption token.
"""

import re
import secrets

__all__ = ['TokenGenerator', 'MIN_TOKEN_BYTES', 'ID_BYTES']

MIN_TOKEN_BYTES = 16  # 128 bits
ID_BYTES = 16

_ID_PATTERN = re.compile(r'^[0-9a-f]{%d}$' % (ID_BYTES * 2))

class TokenGenerator:
    """Produces opaque identifiers and redemption tokens."""

    def __init__(self, token_bytes: int = 32) -> None:
        """Initialize the generator.

        Args:
            token_bytes: Entropy of each redemption token in bytes

        Raises:
            ValueError: If token_bytes is below MIN_TOKEN_BYTES
        """
        if token_bytes < MIN_TOKEN_BYTES:
            raise ValueError(
                f"Redemption tokens need at least {MIN_TOKEN_BYTES} bytes of entropy, "
                f"got {token_bytes}"
            )
        self.token_bytes = token_bytes

    def new_id(self) -> str:
        """Return a new 128-bit identifier as 32 lowercase hex characters."""
        return secrets.token_hex(ID_BYTES)

    def new_redemption_token(self) -> str:
        """Return a new URL-safe redemption token."""
        return secrets.token_urlsafe(self.token_bytes)

    @staticmethod
    def is_valid_id(value) -> bool:
        """Check whether a value has the identifier format produced by new_id."""
        return isinstance(value, str) and bool(_ID_PATTERN.match(value))
