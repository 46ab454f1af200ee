"""
REGISTRATION CORE - RECEIPT NUMBERS

Format: btnmrzp{NNNNN}, zero-padded to 5 digits on every path.

Two derivations:
1. Independent - next value of the `receiptNumber` counter
2. Derived     - the registration identifier's own sequence, so a student
                 keeps the same receipt number however often it is computed
"""

import logging

from .errors import MalformedIdentifier
from .registration_id import decode
from .sequence_allocator import SequenceAllocator, RECEIPT_NUMBER_SEQUENCE

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "btnmrzp"
RECEIPT_WIDTH = 5


def format_receipt_number(sequence: int) -> str:
    return f"{RECEIPT_PREFIX}{str(sequence).zfill(RECEIPT_WIDTH)}"


def derive_from_registration_id(identifier: str) -> str:
    """
    Derive a receipt number from a registration identifier's sequence.

    Raises MalformedIdentifier when the identifier does not decode; the
    caller must then fall back to ReceiptNumberGenerator.generate_independent.
    """
    return format_receipt_number(decode(identifier).sequence)


class ReceiptNumberGenerator:
    """Issues receipt numbers, falling back to the counter when derivation fails."""

    def __init__(self, allocator: SequenceAllocator):
        self.allocator = allocator

    async def generate_independent(self) -> str:
        sequence = await self.allocator.next_value(RECEIPT_NUMBER_SEQUENCE)
        return format_receipt_number(sequence)

    def derive_from_registration_id(self, identifier: str) -> str:
        return derive_from_registration_id(identifier)

    async def assign(self, identifier) -> str:
        """Derive from `identifier` when possible, otherwise allocate independently."""
        if identifier:
            try:
                return derive_from_registration_id(identifier)
            except MalformedIdentifier as e:
                logger.warning(f"[RECEIPT] Derivation failed, using counter: {e.reason}")
        return await self.generate_independent()
