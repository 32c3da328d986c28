"""
Job type registry: payload schemas and execution policies.

Every job type the queue accepts is declared here. A payload is validated
against its type's schema before the job is stored, and the type's policy
decides how many attempts it gets, how long a handler may run and how many
jobs of the type may be leased at once.

Only payout.execute has a handler in this service (registered by the
payments app). thumbnail.create, pdf.generate, reindex.batch,
blockchain.anchor, export.audit and audit.snapshot are schema-only
declarations: their jobs are accepted and validated so the shared queue
keeps one contract, but a runner here dead-letters them on the first
lease with JOB_HANDLER_NOT_FOUND. A worker that registers a handler for
one of them (jobs.handlers.register_handler) runs it normally.

Usage:
    from jobs.registry import get_policy, validate_payload

    validate_payload("payout.execute", {"batch_id": "...", "escrow_id": "..."})
    policy = get_policy("payout.execute")
    policy.max_attempts  # 10
"""

from __future__ import annotations

from dataclasses import dataclass, field

from jobs.exceptions import JobTypeNotFoundError, SchemaValidationFailedError

# Seconds a lease outlives the handler timeout before it is reclaimed
LEASE_GRACE_SECONDS = 60


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class JobSchema:
    """
    Minimal payload schema.

    Attributes:
        required: Fields that must be present
        properties: Field name -> primitive type name
            ('string', 'number', 'boolean', 'array', 'object')
    """

    required: tuple[str, ...] = ()
    properties: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class JobPolicy:
    """
    Execution policy for a job type.

    Attributes:
        max_attempts: Attempts before the job is dead-lettered
        timeout_seconds: Upper bound on one handler run
        concurrency_limit: Max jobs of this type leased at once (None = unbounded)
        lease_seconds: Lease length; defaults to timeout + grace
    """

    max_attempts: int
    timeout_seconds: int
    concurrency_limit: int | None = None
    lease_seconds: int | None = None

    @property
    def effective_lease_seconds(self) -> int:
        return self.lease_seconds or self.timeout_seconds + LEASE_GRACE_SECONDS


@dataclass(frozen=True)
class JobDefinition:
    job_type: str
    schema: JobSchema
    policy: JobPolicy


# =============================================================================
# Registry
# =============================================================================

JOB_REGISTRY: dict[str, JobDefinition] = {}


def register_job_type(job_type: str, schema: JobSchema, policy: JobPolicy) -> JobDefinition:
    definition = JobDefinition(job_type=job_type, schema=schema, policy=policy)
    JOB_REGISTRY[job_type] = definition
    return definition


PAYOUT_EXECUTE = "payout.execute"

register_job_type(
    PAYOUT_EXECUTE,
    JobSchema(
        required=("batch_id", "escrow_id"),
        properties={"batch_id": "string", "escrow_id": "string", "is_retry": "boolean"},
    ),
    # Financial job: many attempts, short runs, bounded parallel PSP calls
    JobPolicy(max_attempts=10, timeout_seconds=60, concurrency_limit=5),
)
register_job_type(
    "thumbnail.create",
    JobSchema(
        required=("asset_id", "version_number"),
        properties={"asset_id": "string", "version_number": "number", "sizes": "array"},
    ),
    JobPolicy(max_attempts=3, timeout_seconds=300),
)
register_job_type(
    "pdf.generate",
    JobSchema(
        required=("agreement_id", "payload_json"),
        properties={"agreement_id": "string", "payload_json": "object"},
    ),
    JobPolicy(max_attempts=5, timeout_seconds=600),
)
register_job_type(
    "reindex.batch",
    JobSchema(
        required=("doc_type", "doc_ids"),
        properties={"doc_type": "string", "doc_ids": "array"},
    ),
    JobPolicy(max_attempts=3, timeout_seconds=3600),
)
register_job_type(
    "blockchain.anchor",
    JobSchema(
        required=("agreement_id", "immutable_hash", "chain"),
        properties={"agreement_id": "string", "immutable_hash": "string", "chain": "string"},
    ),
    JobPolicy(max_attempts=10, timeout_seconds=1800),
)
register_job_type(
    "export.audit",
    JobSchema(
        required=("export_filters", "format", "requester_id"),
        properties={
            "export_filters": "object",
            "format": "string",
            "requester_id": "string",
            "requester_email": "string",
        },
    ),
    JobPolicy(max_attempts=3, timeout_seconds=3600),
)
register_job_type(
    "audit.snapshot",
    JobSchema(
        required=("from", "to"),
        properties={"from": "string", "to": "string"},
    ),
    JobPolicy(max_attempts=3, timeout_seconds=3600),
)


# =============================================================================
# Lookups & Validation
# =============================================================================


def get_definition(job_type: str) -> JobDefinition:
    definition = JOB_REGISTRY.get(job_type)
    if definition is None:
        raise JobTypeNotFoundError(
            f"Unknown job type: {job_type}",
            details={"job_type": job_type},
        )
    return definition


def get_policy(job_type: str) -> JobPolicy:
    return get_definition(job_type).policy


def _matches(value, expected: str) -> bool:
    # bool is an int subclass; booleans are never numbers here
    if expected == "string":
        return isinstance(value, str)
    if expected == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "array":
        return isinstance(value, list)
    if expected == "object":
        return isinstance(value, dict)
    return True


def validate_payload(job_type: str, payload) -> None:
    """
    Validate a payload against its job type's schema.

    All problems are collected before raising, so a payload missing two
    required fields names both.

    Raises:
        JobTypeNotFoundError: job_type is not registered
        SchemaValidationFailedError: Missing or mistyped fields
    """
    schema = get_definition(job_type).schema

    if not isinstance(payload, dict):
        raise SchemaValidationFailedError(
            "Payload must be an object",
            details={"job_type": job_type, "errors": ["Payload must be an object"]},
        )

    errors = [
        f"Missing required field: {name}" for name in schema.required if name not in payload
    ]
    for name, value in payload.items():
        expected = schema.properties.get(name)
        if expected and not _matches(value, expected):
            errors.append(
                f"Invalid type for field {name}: expected {expected}, "
                f"got {type(value).__name__}"
            )

    if errors:
        raise SchemaValidationFailedError(
            "; ".join(errors),
            details={"job_type": job_type, "errors": errors},
        )


__all__ = [
    "JOB_REGISTRY",
    "PAYOUT_EXECUTE",
    "JobDefinition",
    "JobPolicy",
    "JobSchema",
    "get_definition",
    "get_policy",
    "register_job_type",
    "validate_payload",
]
