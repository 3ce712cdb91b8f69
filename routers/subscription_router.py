"""
Subscription Router - status, upgrade, cancellation and entitlement endpoints
"""

import logging
from fastapi import APIRouter, Depends, Request

from backend.utils.responses import success_response, error_response
from models.subscription import PaymentMethod
from services.entitlement_service import EntitlementService
from services.plan_catalog import PlanCatalog

logger = logging.getLogger(__name__)

subscription_router = APIRouter(prefix="/api/subscription", tags=["subscription"])


def get_entitlement_service(request: Request) -> EntitlementService:
    return request.app.state.services.entitlements


def get_plan_catalog(request: Request) -> PlanCatalog:
    return request.app.state.services.catalog


# Declared before /{user_id} so "plans" is not captured as a user id
@subscription_router.get("/plans")
async def list_plans(catalog: PlanCatalog = Depends(get_plan_catalog)):
    plans = [
        {
            "id": plan.id,
            "name": plan.name,
            "price": str(plan.price),
            "display_price": catalog.format_price(plan.price, plan.currency),
            "currency": plan.currency,
            "trial_days": plan.trial_days,
            "assignment_limit": plan.assignment_limit,
            "has_calendar_access": plan.has_calendar_access,
            "features": list(plan.features),
        }
        for plan in catalog.get_plans()
    ]
    return success_response({"plans": plans})


@subscription_router.get("/{user_id}")
async def get_subscription_status(
    user_id: str,
    service: EntitlementService = Depends(get_entitlement_service),
):
    view = await service.check_subscription_status(user_id)
    if view is None:
        return error_response(
            "SUBSCRIPTION_UNAVAILABLE",
            status=503,
            message="Subscription status is temporarily unavailable",
        )
    return success_response(view.model_dump(mode="json"))


@subscription_router.post("/{user_id}/upgrade")
async def upgrade_subscription(
    user_id: str,
    payment_method: PaymentMethod,
    service: EntitlementService = Depends(get_entitlement_service),
):
    """
    Convert a trial (or lapsed subscription) to paid.
    Failures are retry-able and come back as 402 with the gateway's message.
    """
    result = await service.convert_trial_to_paid(user_id, payment_method)
    if not result.success:
        return error_response("UPGRADE_FAILED", status=402, message=result.message)
    return success_response(message=result.message)


@subscription_router.post("/{user_id}/cancel")
async def cancel_subscription(
    user_id: str,
    service: EntitlementService = Depends(get_entitlement_service),
):
    if not await service.cancel_subscription(user_id):
        return error_response(
            "CANCEL_FAILED",
            status=409,
            message="No subscription could be cancelled for this user",
        )
    return success_response(message="Subscription cancelled")


@subscription_router.get("/{user_id}/entitlements")
async def get_entitlements(
    user_id: str,
    service: EntitlementService = Depends(get_entitlement_service),
):
    return success_response({
        "can_create_assignment": await service.can_create_assignment(user_id),
        "can_access_calendar": await service.can_access_calendar(user_id),
        "trial_days_remaining": await service.get_trial_days_remaining(user_id),
    })


@subscription_router.get("/{user_id}/usage")
async def get_usage(
    user_id: str,
    service: EntitlementService = Depends(get_entitlement_service),
):
    usage = await service.get_assignment_usage(user_id)
    return success_response(usage.model_dump())


@subscription_router.post("/{user_id}/usage")
async def record_assignment(
    user_id: str,
    service: EntitlementService = Depends(get_entitlement_service),
):
    if not await service.can_create_assignment(user_id):
        return error_response(
            "ASSIGNMENT_LIMIT",
            status=403,
            message="Please upgrade your plan to create more assignments.",
        )
    if not await service.record_assignment_created(user_id):
        logger.warning(f"Assignment for user {user_id} was allowed but not counted")
    usage = await service.get_assignment_usage(user_id)
    return success_response(usage.model_dump())
