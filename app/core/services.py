"""
Service layer base classes.

- ServiceResult: outcome wrapper for call sites that branch on success
  (webhook handlers report back to the processing task with one)
- BaseService: logging, transactions and FSM transitions for services

Rejected operations raise core.exceptions errors; ServiceResult is for
callers that record a failure instead of propagating it.

Usage:
    from core.services import BaseService

    class EscrowLedger(BaseService):
        def hold(self, escrow_id) -> Escrow:
            with self.atomic():
                escrow = Escrow.objects.select_for_update().get(id=escrow_id)
                self.apply_transition(escrow, "hold")
                escrow.save()

            self.get_logger().info("Escrow held", extra={"escrow_id": str(escrow_id)})
            return escrow
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction
from django_fsm import TransitionNotAllowed

from core.exceptions import InvalidStateTransitionError

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Success flag plus either data or an error.

    Usage:
        result = dispatch_webhook(webhook_event, engine)
        if result.success:
            webhook_event.mark_processed()
        else:
            webhook_event.mark_failed(f"[{result.error_code}] {result.error}")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Failed result carrying the exception's message and code.

        Application errors keep their own error code; anything else falls
        back to the exception class name.
        """
        code = error_code or getattr(exc, "error_code", None)
        return cls(
            success=False,
            error=getattr(exc, "message", None) or str(exc),
            error_code=code or exc.__class__.__name__.upper(),
        )

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Base class for settlement services.

    Collaborators (gateways, job queue, event publisher, notifier) are
    passed to the constructor; services hold no other state.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named after the concrete service class."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Run the block in a database transaction.

        Example:
            with self.atomic():
                self.apply_transition(escrow, "hold")
                escrow.save()
                self.apply_transition(milestone, "approve")
                milestone.save()
                # A failed milestone save rolls back the escrow release too
        """
        with transaction.atomic():
            yield

    @classmethod
    def apply_transition(cls, instance: Any, name: str, *args: Any, **kwargs: Any) -> None:
        """
        Run a django-fsm transition method on ``instance``.

        The caller still has to save(). Protected FSM fields mean a refused
        transition leaves the instance unchanged.

        Raises:
            InvalidStateTransitionError: The transition isn't allowed from
                the current state
        """
        try:
            getattr(instance, name)(*args, **kwargs)
        except TransitionNotAllowed as exc:
            model_name = instance.__class__.__name__
            raise InvalidStateTransitionError(
                f"Cannot {name} {model_name.lower()} from '{instance.status}' status",
                details={
                    "id": str(instance.pk),
                    "current_state": instance.status,
                    "transition": name,
                },
            ) from exc


__all__ = ["BaseService", "ServiceResult"]
