from typing import List, Optional

from fastapi import APIRouter, Query, status

from ...models.return_request import ReturnRequest, ReturnStatus
from ...schemas.returns import (
    PendingReturnAge,
    ReturnDecisionRequest,
    ReturnDropoffRequest,
    ReturnListResponse,
    ReturnRequestCreate,
    ReturnResponse,
)
from ...services.results import Actor, Role
from ...services.return_service import ReturnService
from ..deps import ActorDep, ReturnServiceDep

router = APIRouter(prefix="/returns")


def return_response(request: ReturnRequest, actor: Actor) -> ReturnResponse:
    """The dropoff code is shown only to the requesting customer and admins."""
    response = ReturnResponse.model_validate(request)
    owner = actor.role == Role.CUSTOMER and actor.user_id == request.customer_id
    if not (owner or actor.is_privileged):
        response.dropoff_code = None
    return response


@router.post("/", status_code=status.HTTP_201_CREATED)
async def request_return(
    payload: ReturnRequestCreate,
    actor: Actor = ActorDep,
    return_service: ReturnService = ReturnServiceDep,
) -> ReturnResponse:
    """Customer requests a refund against a delivered order line"""
    result = await return_service.request_return(
        actor,
        payload.order_item_id,
        reason=payload.reason,
        requested_amount=payload.requested_amount,
        description=payload.description,
    )
    return return_response(result.unwrap(), actor)


@router.get("/", status_code=status.HTTP_200_OK)
async def list_returns(
    status_filter: Optional[ReturnStatus] = Query(None, alias="status"),
    vendor_id: Optional[int] = Query(None, description="Admin filter"),
    customer_id: Optional[int] = Query(None, description="Admin filter"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    actor: Actor = ActorDep,
    return_service: ReturnService = ReturnServiceDep,
) -> ReturnListResponse:
    result = (
        await return_service.list_returns(
            actor,
            status_filter=status_filter.value if status_filter else None,
            vendor_id=vendor_id,
            customer_id=customer_id,
            skip=skip,
            limit=limit,
        )
    ).unwrap()
    return ReturnListResponse(
        returns=[return_response(request, actor) for request in result["returns"]],
        total=result["total"],
        skip=result["skip"],
        limit=result["limit"],
    )


@router.get("/pending-ages", status_code=status.HTTP_200_OK)
async def pending_return_ages(
    vendor_id: Optional[int] = Query(None, description="Admin filter"),
    actor: Actor = ActorDep,
    return_service: ReturnService = ReturnServiceDep,
) -> List[PendingReturnAge]:
    """Pending requests with their age, oldest first"""
    rows = (await return_service.pending_return_ages(actor, vendor_id=vendor_id)).unwrap()
    return [PendingReturnAge(**row) for row in rows]


@router.get("/{request_id}", status_code=status.HTTP_200_OK)
async def get_return(
    request_id: int,
    actor: Actor = ActorDep,
    return_service: ReturnService = ReturnServiceDep,
) -> ReturnResponse:
    request = (await return_service.get_return(actor, request_id)).unwrap()
    return return_response(request, actor)


@router.post("/{request_id}/decision", status_code=status.HTTP_200_OK)
async def decide_return(
    request_id: int,
    payload: ReturnDecisionRequest,
    actor: Actor = ActorDep,
    return_service: ReturnService = ReturnServiceDep,
) -> ReturnResponse:
    """Vendor or admin approves or rejects a pending request"""
    result = await return_service.decide(
        actor, request_id, payload.decision, vendor_response=payload.vendor_response
    )
    return return_response(result.unwrap(), actor)


@router.post("/{request_id}/dropoff", status_code=status.HTTP_200_OK)
async def confirm_return_dropoff(
    request_id: int,
    payload: ReturnDropoffRequest,
    actor: Actor = ActorDep,
    return_service: ReturnService = ReturnServiceDep,
) -> ReturnResponse:
    """Agent confirms the returned item was handed in"""
    result = await return_service.confirm_return_dropoff(actor, request_id, payload.code)
    return return_response(result.unwrap(), actor)


@router.post("/{request_id}/complete", status_code=status.HTTP_200_OK)
async def complete_return(
    request_id: int,
    actor: Actor = ActorDep,
    return_service: ReturnService = ReturnServiceDep,
) -> ReturnResponse:
    """Refund paid back to the customer (payment gateway callback)"""
    result = await return_service.complete(actor, request_id)
    return return_response(result.unwrap(), actor)
