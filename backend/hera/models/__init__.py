from .tenancy import Organization
from .entities import CoreEntity, CoreDynamicData, FIELD_TYPES
from .metadata import CoreMetadata
from .relationships import CoreRelationship
from .transactions import UniversalTransaction, UniversalTransactionLine, TransactionStatusEvent, TransactionSequence

__all__ = [
    'Organization',
    'CoreEntity', 'CoreDynamicData', 'FIELD_TYPES',
    'CoreMetadata',
    'CoreRelationship',
    'UniversalTransaction', 'UniversalTransactionLine', 'TransactionStatusEvent', 'TransactionSequence',
]
