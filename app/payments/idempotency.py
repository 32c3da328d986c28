"""
Idempotency keys for payment provider calls.

Keys are derived from the operation, the entity id and the attempt number,
so a retried call for the same attempt reuses the key and the provider
returns the original result instead of moving money twice.
"""

from __future__ import annotations

import hashlib
import uuid

from django.conf import settings


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for provider API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The hash component provides uniqueness across environments sharing a
    Stripe account while the structured format aids debugging.

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="transfer",
            entity_id=payout_item.id,
            attempt=payout_item.attempts,
        )
        # Result: "transfer:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


__all__ = ["IdempotencyKeyGenerator"]
