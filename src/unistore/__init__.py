"""Unified storage abstraction over heterogeneous file backends."""

import logging

from unistore._cancellation import NEVER_CANCELLED, CancellationToken, CancellationTokenSource
from unistore._capabilities import Capability, CapabilitySet
from unistore._chunked import CHUNK_THRESHOLD, PART_SIZE, MultipartSession, upload_chunked
from unistore._entry import Entry, EntryType, ListOptions, ListResult, VirtualEntry, generate_entry_id
from unistore._error_mapping import ErrorRule, ErrorTable
from unistore._errors import (
    InvalidPath,
    InvalidProfile,
    OperationCancelled,
    ProviderNotAvailable,
    UnistoreError,
    UserError,
    describe,
    format_error,
)
from unistore._factory import Registry, create_provider, register_provider
from unistore._options import DeleteOptions, ReadOptions, TransferOptions, WriteOptions
from unistore._pending import (
    CommitReport,
    EntryState,
    ListingOverlay,
    PendingOperation,
    PendingOperationsStore,
    PendingOperationType,
)
from unistore._profile import Profile
from unistore._progress import ProgressEvent
from unistore._provider import ConnectionState, Provider
from unistore._result import (
    OperationError,
    OperationResult,
    OperationStatus,
    is_cancelled,
    is_error,
    is_success,
    is_unimplemented,
)
from unistore._retry import NO_RETRY, S3_RETRY_POLICY, RetryPolicy, call_with_retry

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Core
    "Provider",
    "ConnectionState",
    "Registry",
    "create_provider",
    "register_provider",
    "Profile",
    # Entries & options
    "Entry",
    "EntryType",
    "VirtualEntry",
    "ListOptions",
    "ListResult",
    "ReadOptions",
    "WriteOptions",
    "DeleteOptions",
    "TransferOptions",
    "generate_entry_id",
    # Capabilities
    "Capability",
    "CapabilitySet",
    # Results
    "OperationStatus",
    "OperationError",
    "OperationResult",
    "is_success",
    "is_error",
    "is_unimplemented",
    "is_cancelled",
    "ErrorRule",
    "ErrorTable",
    # Resilience & transfers
    "RetryPolicy",
    "NO_RETRY",
    "S3_RETRY_POLICY",
    "call_with_retry",
    "CHUNK_THRESHOLD",
    "PART_SIZE",
    "MultipartSession",
    "upload_chunked",
    "ProgressEvent",
    "CancellationToken",
    "CancellationTokenSource",
    "NEVER_CANCELLED",
    # Pending operations
    "PendingOperationsStore",
    "PendingOperation",
    "PendingOperationType",
    "EntryState",
    "ListingOverlay",
    "CommitReport",
    # Errors
    "UnistoreError",
    "InvalidPath",
    "InvalidProfile",
    "ProviderNotAvailable",
    "OperationCancelled",
    "UserError",
    "describe",
    "format_error",
    # Version
    "__version__",
]
