"""
Core Application - Infrastructure & Base Classes

Generic, reusable building blocks shared by the domain apps
(projects, payments, jobs). No domain-specific logic lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - VersionedMixin: Optimistic locking version counter

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError, NotFoundError, PermissionDeniedError, ConflictError,
      ExternalServiceError
    - StaleRecordError, LockAcquisitionError, InvalidStateTransitionError

Concurrency (import from core.locks):
    - DistributedLock: Redis mutual exclusion with TTL
    - check_version: Version check + row lock
    - compare_and_swap: Conditional versioned UPDATE

API (import from core.exception_handler):
    - application_exception_handler: DRF handler for BaseApplicationError

Note:
    Models, model mixins and locks are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

# Services (no Django model dependencies)
from .services import BaseService, ServiceResult

# Exceptions (no Django dependencies)
from .exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    InvalidStateTransitionError,
    LockAcquisitionError,
    NotFoundError,
    PermissionDeniedError,
    StaleRecordError,
    ValidationError,
)

__all__ = [
    # Services
    "BaseService",
    "ServiceResult",
    # Exceptions
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "PermissionDeniedError",
    "ConflictError",
    "ExternalServiceError",
    "StaleRecordError",
    "LockAcquisitionError",
    "InvalidStateTransitionError",
]
