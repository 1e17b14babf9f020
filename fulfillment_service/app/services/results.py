"""
Operation results and the per-operation unit of work.

Every public service operation returns an ``OperationResult``: either the
entity it produced or a ``Failure`` describing why it was rejected.
Business rule violations never escape a service as exceptions.
"""

import functools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import FailureKind, FulfillmentError, OperationFailedError
from ..events.schemas import FulfillmentEventData
from ..utils.logging import setup_fulfillment_logging as setup_logging

logger = setup_logging("fulfillment_service.operations", log_level="INFO")

T = TypeVar("T")


class Role(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    AGENT = "agent"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Identity resolved by the authentication collaborator."""

    user_id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_privileged(self) -> bool:
        return self.role in (Role.ADMIN, Role.SYSTEM)


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    reason: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_error(cls, error: FulfillmentError) -> "Failure":
        return cls(
            kind=error.kind,
            reason=error.reason,
            message=error.message,
            details=error.details,
        )


@dataclass
class OperationResult(Generic[T]):
    value: Optional[T] = None
    failure: Optional[Failure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failed(cls, failure: Failure) -> "OperationResult[T]":
        return cls(failure=failure)

    def unwrap(self) -> T:
        """Return the value or raise ``OperationFailedError`` for the API layer."""
        if self.failure is not None:
            raise OperationFailedError(self.failure)
        return self.value  # type: ignore[return-value]


PERSISTENCE_FAILURE = Failure(
    kind=FailureKind.PERSISTENCE,
    reason="persistence_error",
    message="The operation could not be completed. Please try again later.",
)


@dataclass
class StagedEvent:
    event_type: str
    data: FulfillmentEventData
    correlation_id: Optional[str] = None


class TransactionalService:
    """
    Base for services whose public operations run as one unit of work.

    Domain events staged during an operation are published only once the
    transaction has committed.
    """

    def __init__(self, session: AsyncSession, event_producer: Optional[Any] = None):
        self.session = session
        self.event_producer = event_producer
        self._staged_events: List[StagedEvent] = []

    def stage_event(
        self,
        event_type: str,
        data: FulfillmentEventData,
        correlation_id: Optional[Any] = None,
    ) -> None:
        self._staged_events.append(
            StagedEvent(
                event_type=event_type,
                data=data,
                correlation_id=str(correlation_id) if correlation_id is not None else None,
            )
        )

    async def _publish_staged_events(self) -> None:
        events, self._staged_events = self._staged_events, []
        if not self.event_producer:
            return
        for staged in events:
            try:
                await self.event_producer.publish_domain_event(
                    event_type=staged.event_type,
                    data=staged.data,
                    correlation_id=staged.correlation_id,
                )
            except Exception:
                # The state change is already committed
                logger.error(
                    "Failed to publish domain event after commit",
                    extra={"event_type": staged.event_type},
                    exc_info=True,
                )


def unit_of_work(
    operation: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[OperationResult[T]]]]:
    """
    Run a service method as one transaction and recover failures into a result.

    Commits on success, rolls back on any failure, maps unexpected
    persistence errors to a generic failure and publishes staged events
    after the commit.
    """

    def decorator(func: Callable[..., Awaitable[T]]):
        @functools.wraps(func)
        async def wrapper(self: TransactionalService, *args, **kwargs) -> OperationResult[T]:
            self._staged_events = []
            try:
                value = await func(self, *args, **kwargs)
                await self.session.commit()
            except FulfillmentError as error:
                await self.session.rollback()
                self._staged_events = []
                logger.warning(
                    f"{operation} rejected: {error.message}",
                    extra={
                        "operation": operation,
                        "failure_kind": error.kind.value,
                        "reason": error.reason,
                        "details": error.details,
                    },
                )
                return OperationResult.failed(Failure.from_error(error))
            except SQLAlchemyError:
                await self.session.rollback()
                self._staged_events = []
                logger.error(
                    f"{operation} failed with a persistence error",
                    extra={"operation": operation},
                    exc_info=True,
                )
                return OperationResult.failed(PERSISTENCE_FAILURE)

            await self._publish_staged_events()
            return OperationResult.success(value)

        return wrapper

    return decorator
