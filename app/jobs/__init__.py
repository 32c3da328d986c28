"""
Jobs app - durable background job queue.

Jobs are rows in the database, leased by workers with a versioned
compare-and-swap, retried with exponential backoff and dead-lettered when
their attempts run out. Celery beat drives the runner; external workers can
use the same lease/report protocol over HTTP.

Modules:
    registry: Job types, payload schemas and execution policies
    backoff: Retry delay calculation
    handlers: Handler registration (job type -> callable)
    runner: JobRunner (enqueue, lease, report, execute, reclaim, DLQ retry)
    queue: JobQueuePort adapter used by the settlement engine
    tasks: Celery entry points
"""
