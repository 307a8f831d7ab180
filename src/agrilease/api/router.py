"""REST API router."""

import json
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile
from pydantic import TypeAdapter, ValidationError

from agrilease import __version__
from agrilease.api.deps import (
    get_dispatcher,
    get_engine,
    get_request_context,
    verify_api_key,
)
from agrilease.api.schemas import (
    ActivePricingResponse,
    AllowedTransitionsResponse,
    ChangeDeviceStatusRequest,
    ConfigurePricingRequest,
    ConflictsResponse,
    CreateDistributorProfileRequest,
    CreateIntentRequest,
    CreateLeaseForm,
    CreatePricingRuleResponse,
    EndLeaseRequest,
    FinalizeDeviceRequest,
    HealthResponse,
    MetricsResponse,
    OrderNoteRequest,
    RegisterDeviceRequest,
    ThresholdRequest,
    UpdateOrderStatusRequest,
)
from agrilease.config import settings
from agrilease.engine import AgriLeaseEngine, ValidationFailed
from agrilease.engine.devices import PricingSetup, PricingStatus
from agrilease.engine.discovery import DeviceDetails, DiscoveryPage, DiscoveryQuery
from agrilease.engine.leases import LeaseRequest
from agrilease.engine.pricing import estimate_price
from agrilease.events.dispatcher import EventDispatcher
from agrilease.integrations.sms_client import get_sms_client
from agrilease.models import (
    AuditEntityType,
    AuditEvent,
    Device,
    DeviceStatus,
    DiscoveryIntent,
    DistributorProfile,
    DocumentType,
    Lease,
    LeaseStatus,
    OperatorAssignment,
    Order,
    OrderRequest,
    OrderStatus,
    PricingRule,
    PricingRuleDraft,
    RequestContext,
    RuleStatus,
    ThresholdConfig,
    UploadedDocument,
)
from agrilease.observability.metrics import metrics
from agrilease.utils.time import utc_now

router = APIRouter(prefix="/v1", dependencies=[Depends(verify_api_key)])

_operators_adapter = TypeAdapter(list[OperatorAssignment])


def _limit(limit: Optional[int]) -> int:
    return min(limit or settings.default_list_limit, settings.max_list_limit)


# ============================================================================
# Health & Metrics
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__, environment=settings.env.value)


@router.get("/metrics", response_model=MetricsResponse)
async def get_metrics(dispatcher: EventDispatcher = Depends(get_dispatcher)):
    """In-process counters, gauges and histograms."""
    metrics.set_gauge("events.queued", dispatcher.queued)
    return MetricsResponse(
        generated_at=utc_now(),
        metrics=metrics.snapshot(),
        sms_circuit=get_sms_client().get_circuit_stats(),
    )


# ============================================================================
# Discovery
# ============================================================================


@router.get("/discovery/devices", response_model=DiscoveryPage)
async def search_devices(
    latitude: float = Query(..., ge=-90, le=90),
    longitude: float = Query(..., ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0),
    device_type: Optional[str] = Query(None),
    requested_hours: Optional[float] = Query(None, ge=0),
    requested_acres: Optional[float] = Query(None, ge=0),
    page: int = Query(0),
    page_size: Optional[int] = Query(None),
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """Orderable devices near a point, nearest first."""
    return await engine.discovery.search(
        ctx,
        DiscoveryQuery(
            latitude=latitude,
            longitude=longitude,
            radius_km=radius_km,
            device_type=device_type,
            requested_hours=requested_hours,
            requested_acres=requested_acres,
            page=page,
            page_size=page_size,
        ),
    )


@router.get("/discovery/devices/{device_id}", response_model=DeviceDetails)
async def get_device_details(
    device_id: UUID,
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    return await engine.discovery.get_device_details(ctx, device_id, latitude, longitude)


@router.post("/discovery/intents", response_model=DiscoveryIntent, status_code=201)
async def create_intent(
    request: CreateIntentRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
):
    """Record interest from discovery ahead of an order."""
    intent = await engine.discovery.create_intent(
        request.device_id,
        intent_type=request.intent_type,
        requested_hours=request.requested_hours,
        requested_acres=request.requested_acres,
    )
    await engine.commit()
    return intent


# ============================================================================
# Orders
# ============================================================================


@router.post("/orders", response_model=Order, status_code=201)
async def create_order(
    request: OrderRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """Raise interest in a device."""
    order = await engine.orders.create_order(ctx, request)
    await engine.commit()
    return order


@router.get("/orders/mine", response_model=list[Order])
async def list_my_orders(
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    return await engine.orders.list_my_orders(ctx, limit=_limit(limit), offset=offset)


@router.get("/orders/lease-queue", response_model=list[Order])
async def list_lease_orders(
    status: Optional[OrderStatus] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """LEASE orders awaiting administrators."""
    return await engine.orders.list_lease_orders(
        ctx, status=status, limit=_limit(limit), offset=offset
    )


@router.get("/orders/rent-queue", response_model=list[Order])
async def list_rent_orders(
    status: Optional[OrderStatus] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """RENT orders handled by the caller's distributor profile."""
    return await engine.orders.list_rent_orders(
        ctx, status=status, limit=_limit(limit), offset=offset
    )


@router.get("/orders/{order_id}", response_model=Order)
async def get_order(
    order_id: UUID,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    return await engine.orders.view_order(ctx, order_id)


@router.get("/orders/{order_id}/transitions", response_model=AllowedTransitionsResponse)
async def get_allowed_transitions(
    order_id: UUID,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    order = await engine.orders.view_order(ctx, order_id)
    allowed = await engine.orders.allowed_next_states(order_id)
    return AllowedTransitionsResponse(
        order_id=order.order_id,
        current_status=order.status,
        allowed_next_states=sorted(allowed, key=lambda s: s.value),
    )


@router.post("/orders/{order_id}/status", response_model=Order)
async def update_order_status(
    order_id: UUID,
    request: UpdateOrderStatusRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """Move an order along its lifecycle (handler only)."""
    order = await engine.orders.update_status(ctx, order_id, request.status, request.note)
    await engine.commit()
    return order


@router.post("/orders/{order_id}/cancel", response_model=Order)
async def cancel_order(
    order_id: UUID,
    request: OrderNoteRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    order = await engine.orders.cancel_order(ctx, order_id, request.note)
    await engine.commit()
    return order


@router.post("/orders/{order_id}/reject", response_model=Order)
async def reject_order(
    order_id: UUID,
    request: OrderNoteRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    order = await engine.orders.reject_order(ctx, order_id, request.note)
    await engine.commit()
    return order


# ============================================================================
# Leases
# ============================================================================


@router.post("/leases", response_model=Lease, status_code=201)
async def create_lease(
    form: CreateLeaseForm = Depends(CreateLeaseForm.as_form),
    files: list[UploadFile] = File(default=[]),
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """Create a lease from an accepted LEASE order (administrators only)."""
    operators: list[OperatorAssignment] = []
    if form.operators:
        try:
            operators = _operators_adapter.validate_python(json.loads(form.operators))
        except (ValueError, ValidationError) as e:
            raise ValidationFailed(f"Invalid operators: {e}") from e

    attachment_types: list[DocumentType] = []
    if form.attachment_types:
        try:
            attachment_types = [
                DocumentType(t.strip().lower())
                for t in form.attachment_types.split(",")
                if t.strip()
            ]
        except ValueError as e:
            raise ValidationFailed(f"Invalid attachment type: {e}") from e

    documents = [
        UploadedDocument(
            filename=f.filename or "",
            content=await f.read(),
            content_type=f.content_type,
        )
        for f in files
    ]

    lease = await engine.leases.create_lease_from_order(
        ctx,
        LeaseRequest(
            order_id=form.order_id,
            deposit_amount=form.deposit_amount,
            notes=form.notes,
            operators=operators,
            attachments=documents,
            attachment_types=attachment_types,
        ),
    )
    await engine.commit()
    return lease


@router.get("/leases/{lease_id}", response_model=Lease)
async def get_lease(
    lease_id: UUID,
    engine: AgriLeaseEngine = Depends(get_engine),
):
    return await engine.leases.get_lease(lease_id)


@router.post("/leases/{lease_id}/operators", response_model=Lease)
async def assign_operator(
    lease_id: UUID,
    request: OperatorAssignment,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    lease = await engine.leases.assign_operator(ctx, lease_id, request)
    await engine.commit()
    return lease


@router.post("/leases/{lease_id}/end", response_model=Lease)
async def end_lease(
    lease_id: UUID,
    request: EndLeaseRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """Complete or terminate a lease and release its device."""
    lease = await engine.leases.end_lease(ctx, lease_id, request.status, request.note)
    await engine.commit()
    return lease


# ============================================================================
# Distributor profiles
# ============================================================================


@router.post("/distributors", response_model=DistributorProfile, status_code=201)
async def create_distributor_profile(
    request: CreateDistributorProfileRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    profile = await engine.devices.create_distributor_profile(
        ctx, request.user_id, request.name, request.pincode
    )
    await engine.commit()
    return profile


@router.get("/distributors/{distributor_id}", response_model=DistributorProfile)
async def get_distributor_profile(
    distributor_id: str,
    engine: AgriLeaseEngine = Depends(get_engine),
):
    return await engine.devices.get_distributor_profile(distributor_id)


@router.get("/distributors/{distributor_id}/leases", response_model=list[Lease])
async def list_distributor_leases(
    distributor_id: str,
    status: Optional[LeaseStatus] = Query(None),
    engine: AgriLeaseEngine = Depends(get_engine),
):
    await engine.devices.get_distributor_profile(distributor_id)
    return await engine.leases.list_leases_for_distributor(distributor_id, status)


# ============================================================================
# Device administration
# ============================================================================


@router.post("/admin/devices", response_model=Device, status_code=201)
async def register_device(
    request: RegisterDeviceRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """Register a device in DRAFT."""
    device = await engine.devices.register_device(
        ctx,
        name=request.name,
        device_type=request.device_type,
        pincode=request.pincode,
        location=request.location,
        requires_operator=request.requires_operator,
    )
    await engine.commit()
    return device


@router.get("/admin/devices", response_model=list[Device])
async def list_devices(
    status: Optional[DeviceStatus] = Query(None),
    search: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    return await engine.devices.list_devices(
        ctx, status=status, search=search, limit=_limit(limit), offset=offset
    )


@router.get("/admin/devices/{device_id}", response_model=Device)
async def get_device(
    device_id: UUID,
    engine: AgriLeaseEngine = Depends(get_engine),
):
    return await engine.devices.get_device(device_id)


@router.post("/admin/devices/{device_id}/pricing", response_model=PricingSetup, status_code=201)
async def configure_device_pricing(
    device_id: UUID,
    request: ConfigurePricingRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """Create the default rule for the device's scope plus dated windows."""
    setup = await engine.devices.configure_pricing(
        ctx, device_id, request.default_rules, request.time_specific_rules
    )
    await engine.commit()
    return setup


@router.get("/admin/devices/{device_id}/pricing-status", response_model=PricingStatus)
async def get_pricing_status(
    device_id: UUID,
    engine: AgriLeaseEngine = Depends(get_engine),
):
    return await engine.devices.pricing_status(device_id)


@router.post("/admin/devices/{device_id}/finalize", response_model=Device)
async def finalize_device(
    device_id: UUID,
    request: FinalizeDeviceRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    device = await engine.devices.finalize(ctx, device_id, request.action)
    await engine.commit()
    return device


@router.post("/admin/devices/{device_id}/status", response_model=Device)
async def change_device_status(
    device_id: UUID,
    request: ChangeDeviceStatusRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    device = await engine.devices.change_status(ctx, device_id, request.status)
    await engine.commit()
    return device


# ============================================================================
# Pricing rules & thresholds
# ============================================================================


@router.post("/pricing-rules", response_model=CreatePricingRuleResponse, status_code=201)
async def create_pricing_rule(
    request: PricingRuleDraft,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """Create a rule; overlapping time-specific rules are reported, not refused."""
    created = await engine.devices.create_pricing_rule(ctx, request)
    await engine.commit()
    return CreatePricingRuleResponse(rule=created.rule, conflicts=created.conflicts)


@router.post("/pricing-rules/conflicts", response_model=ConflictsResponse)
async def check_pricing_conflicts(
    request: PricingRuleDraft,
    engine: AgriLeaseEngine = Depends(get_engine),
):
    return ConflictsResponse(conflicts=await engine.pricing.check_for_conflicts(request))


@router.get("/pricing-rules", response_model=list[PricingRule])
async def list_pricing_rules(
    device_type: Optional[str] = Query(None),
    pincode: Optional[str] = Query(None),
    status: Optional[RuleStatus] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    engine: AgriLeaseEngine = Depends(get_engine),
):
    return await engine.pricing.list_rules(
        device_type, pincode, status, limit=_limit(limit), offset=offset
    )


@router.get("/pricing-rules/{rule_id}", response_model=PricingRule)
async def get_pricing_rule(
    rule_id: UUID,
    engine: AgriLeaseEngine = Depends(get_engine),
):
    return await engine.pricing.get_rule(rule_id)


@router.post("/pricing-rules/{rule_id}/deactivate", response_model=PricingRule)
async def deactivate_pricing_rule(
    rule_id: UUID,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    rule = await engine.devices.deactivate_pricing_rule(ctx, rule_id)
    await engine.commit()
    return rule


@router.get("/devices/{device_id}/active-pricing", response_model=ActivePricingResponse)
async def get_active_pricing(
    device_id: UUID,
    on_date: Optional[date] = Query(None),
    requested_hours: Optional[float] = Query(None, ge=0),
    requested_acres: Optional[float] = Query(None, ge=0),
    engine: AgriLeaseEngine = Depends(get_engine),
):
    """Rule in force for a device on a date, with an optional price estimate."""
    rule = await engine.pricing.get_active_pricing_for_device(device_id, on_date)
    return ActivePricingResponse(
        device_id=device_id,
        rule=rule,
        estimated_price=estimate_price(rule, requested_hours, requested_acres),
    )


@router.put("/thresholds/{device_type}", response_model=ThresholdConfig)
async def save_threshold(
    device_type: str,
    request: ThresholdRequest,
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    config = await engine.devices.save_threshold(
        ctx, device_type, request.max_rental_hours, request.max_rental_acres
    )
    await engine.commit()
    return config


@router.get("/thresholds/{device_type}", response_model=ThresholdConfig)
async def get_threshold(
    device_type: str,
    engine: AgriLeaseEngine = Depends(get_engine),
):
    return await engine.pricing.get_threshold(device_type)


# ============================================================================
# Audit
# ============================================================================


@router.get("/audit/{entity_type}/{entity_id}", response_model=list[AuditEvent])
async def get_audit_trail(
    entity_type: AuditEntityType,
    entity_id: str,
    limit: Optional[int] = Query(None, ge=1),
    engine: AgriLeaseEngine = Depends(get_engine),
    ctx: RequestContext = Depends(get_request_context),
):
    """State-change history of an order, lease or device, oldest first."""
    return await engine.devices.audit_trail(ctx, entity_type, entity_id, limit=_limit(limit))
