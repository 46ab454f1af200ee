"""
Registration core: identifiers, receipt numbers and payment reconciliation
"""
from .errors import (
    RegistrationError,
    ValidationError,
    NotFound,
    Unauthorized,
    InvalidSignature,
    MalformedIdentifier,
    RegistrationLocked,
    AllocationFailed,
    ReconciliationFailed,
    GatewayUnavailable,
    GatewayError
)

from .sequence_allocator import (
    SequenceAllocator,
    REGISTRATION_ID_SEQUENCE,
    RECEIPT_NUMBER_SEQUENCE
)

from .registration_id import (
    ExamType,
    RegistrationStatus,
    RegistrationIdentifier,
    encode,
    decode,
    recode
)

from .receipt_number import (
    ReceiptNumberGenerator,
    derive_from_registration_id,
    format_receipt_number
)

from .registration_store import (
    RegistrationStore,
    PaymentStatus
)

from .payment_gateway import RazorpayGateway

from .reconciliation import (
    PaymentReconciliationCoordinator,
    ReconcileResult,
    ReconcileStatus,
    Trigger
)

from .reconciliation_sweep import ReconciliationSweep

from .exam_config import ExamConfigService

__all__ = [
    # Errors
    'RegistrationError',
    'ValidationError',
    'NotFound',
    'Unauthorized',
    'InvalidSignature',
    'MalformedIdentifier',
    'RegistrationLocked',
    'AllocationFailed',
    'ReconciliationFailed',
    'GatewayUnavailable',
    'GatewayError',
    # Sequences
    'SequenceAllocator',
    'REGISTRATION_ID_SEQUENCE',
    'RECEIPT_NUMBER_SEQUENCE',
    # Identifier codec
    'ExamType',
    'RegistrationStatus',
    'RegistrationIdentifier',
    'encode',
    'decode',
    'recode',
    # Receipt numbers
    'ReceiptNumberGenerator',
    'derive_from_registration_id',
    'format_receipt_number',
    # Lifecycle
    'RegistrationStore',
    'PaymentStatus',
    # Payments
    'RazorpayGateway',
    'PaymentReconciliationCoordinator',
    'ReconcileResult',
    'ReconcileStatus',
    'Trigger',
    'ReconciliationSweep',
    # Configuration
    'ExamConfigService',
]
