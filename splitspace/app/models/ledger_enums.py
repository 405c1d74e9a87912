"""
Ledger enumerations.
"""

import enum


class LedgerEntryType(str, enum.Enum):
    """Ledger entry type enumeration."""
    TOPUP = "topup"  # External funds received
    TRANSFER = "transfer"  # Peer-to-peer
    ROOM_CONTRIBUTION = "room_contribution"  # Wallet -> room escrow
    ROOM_UNLOCK = "room_unlock"  # Room escrow -> creator
    ROOM_REFUND = "room_refund"  # Room escrow -> contributor
    RECURRING_DEDUCTION = "recurring_deduction"  # Wallet -> HourGlass plan
    RECURRING_REFUND = "recurring_refund"  # HourGlass plan -> wallet (cancel)


class LedgerEntryStatus(str, enum.Enum):
    """Ledger entry status. COMPLETED and FAILED are terminal."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Entry types that count towards a user's daily outgoing limit
OUTGOING_LIMITED_TYPES = (LedgerEntryType.TRANSFER, LedgerEntryType.ROOM_CONTRIBUTION)
