"""Repository for design request database operations."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from canvascue.core.numbering import NumberTakenError, commit_numbered, next_monthly_number
from canvascue.core.retry import RetryConfig, retry_async
from canvascue.modules.design_requests.models import (
    ACTIVE_REQUEST_STATUSES,
    CANCELABLE_ON_UNSUBSCRIBE,
    DesignRequest,
    DesignRequestStatus,
)


class DesignRequestRepository:
    """Repository for design request operations.

    Also serves as the active request counter for usage accounting.
    """

    def __init__(self, session: AsyncSession, number_retry: Optional[RetryConfig] = None):
        self.session = session
        self.number_retry = number_retry or RetryConfig(
            max_attempts=5, initial_delay=0.01, max_delay=0.1
        )

    async def get_by_id(self, request_id: uuid.UUID) -> Optional[DesignRequest]:
        """Get design request by ID."""
        result = await self.session.execute(
            select(DesignRequest).where(DesignRequest.id == request_id)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        client_id: uuid.UUID,
        subscription_id: uuid.UUID,
        title: str,
        description: str,
        category: str,
        now: datetime,
        status: DesignRequestStatus = DesignRequestStatus.SUBMITTED,
    ) -> DesignRequest:
        """Create a design request with the next request number of the month.

        A number taken by a concurrent submission is drawn again. Each
        conflict rolls the session back, so callers must refresh objects
        they loaded earlier.

        Raises:
            NumberTakenError: If every attempt collided
        """

        async def insert() -> DesignRequest:
            number = await next_monthly_number(
                self.session, DesignRequest.request_number, now, prefix="DR"
            )
            request = DesignRequest(
                request_number=number,
                client_id=client_id,
                subscription_id=subscription_id,
                title=title.strip(),
                description=description.strip(),
                category=category,
                status=status.value,
                submitted_at=now if status == DesignRequestStatus.SUBMITTED else None,
                created_at=now,
            )
            await commit_numbered(self.session, request, DesignRequest.request_number, number)
            return request

        request = await retry_async(
            insert,
            config=self.number_retry,
            retry_on=(NumberTakenError,),
            description="design request numbering",
        )
        await self.session.refresh(request)
        return request

    async def count_active(self, user_id: uuid.UUID) -> int:
        """Count the user's requests that occupy a simultaneous-request slot."""
        result = await self.session.execute(
            select(func.count(DesignRequest.id)).where(
                DesignRequest.client_id == user_id,
                DesignRequest.status.in_([s.value for s in ACTIVE_REQUEST_STATUSES]),
            )
        )
        return result.scalar_one()

    async def update_status(
        self,
        request: DesignRequest,
        status: DesignRequestStatus,
        now: datetime,
    ) -> DesignRequest:
        """Move a request to ``status``, stamping completion or cancellation."""
        request.status = status.value
        if status == DesignRequestStatus.COMPLETED:
            request.completed_at = now
        elif status == DesignRequestStatus.CANCELED:
            request.canceled_at = now
        await self.session.commit()
        await self.session.refresh(request)
        return request

    async def cancel_open_requests(self, user_id: uuid.UUID, now: datetime) -> int:
        """Cancel the user's draft and submitted requests.

        Returns:
            Number of requests canceled
        """
        result = await self.session.execute(
            update(DesignRequest)
            .where(
                DesignRequest.client_id == user_id,
                DesignRequest.status.in_([s.value for s in CANCELABLE_ON_UNSUBSCRIBE]),
            )
            .values(
                status=DesignRequestStatus.CANCELED.value,
                canceled_at=now,
                updated_at=now,
            )
        )
        await self.session.commit()
        return result.rowcount
