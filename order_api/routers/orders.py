import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from order_api.dependencies import get_auth_context, get_coordinator, get_request_id
from order_api.schemas.order import OrderAccepted, OrderCreate, OrderResponse
from order_api.services.identity import AnonymousContext, AuthContext, extract_identity
from order_api.services.order_service import IntakeCoordinator
from shared.errors import AuthenticationError, OrderNotFoundError
from shared.orders import OrderMetadata

router = APIRouter()
logger = logging.getLogger(__name__)


def _request_metadata(request: Request) -> OrderMetadata:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        source_ip = forwarded.split(",")[0].strip()
    elif request.client is not None:
        source_ip = request.client.host
    else:
        source_ip = "unknown"
    return OrderMetadata(
        user_agent=request.headers.get("user-agent", "unknown"),
        source_ip=source_ip,
    )


@router.post("", response_model=OrderAccepted, status_code=status.HTTP_202_ACCEPTED)
async def place_order(
    body: OrderCreate,
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    coordinator: IntakeCoordinator = Depends(get_coordinator),
    request_id: str = Depends(get_request_id),
) -> OrderAccepted:
    if isinstance(context, AnonymousContext):
        raise AuthenticationError("Unauthorized")

    identity = extract_identity(context)
    logger.info(
        "Received place_order request",
        extra={"request_id": request_id, "customer_id": identity.user_id, "auth_method": identity.auth_method.value},
    )
    order = await coordinator.submit(body, identity, _request_metadata(request), request_id)
    return OrderAccepted(
        order_id=order.order_id,
        status=order.status,
        total_amount=order.total_amount,
    )


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    context: AuthContext = Depends(get_auth_context),
    coordinator: IntakeCoordinator = Depends(get_coordinator),
    request_id: str = Depends(get_request_id),
) -> OrderResponse:
    if isinstance(context, AnonymousContext):
        raise AuthenticationError("Unauthorized")

    logger.info(
        "Received get_order request",
        extra={"request_id": request_id, "order_id": order_id},
    )
    try:
        order = await coordinator.get_order(order_id)
    except OrderNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    identity = extract_identity(context)
    if order.customer_id != identity.user_id:
        # Don't reveal other customers' orders.
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return OrderResponse.from_order(order)
