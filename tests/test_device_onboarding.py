"""
Device onboarding, status management and distributor profile tests.
"""

from datetime import date
from uuid import uuid4

import pytest

from agrilease.engine.devices import TimeWindowRates
from agrilease.engine.errors import (
    AuthenticationRequired,
    ConcurrentModification,
    DeviceNotFound,
    DeviceRetired,
    DistributorProfileNotFound,
    DuplicateDefaultRule,
    ForbiddenError,
    PreconditionFailed,
    PricingRuleRequired,
    ThresholdConfigNotFound,
    ValidationFailed,
)
from agrilease.models import (
    AuditAction,
    AuditEntityType,
    DeviceStatus,
    GeoPoint,
    OnboardingAction,
    PricingMetric,
    PricingRuleDraft,
    PricingRuleItem,
    RuleStatus,
    UserRole,
)

from conftest import ORIGIN, PINCODE, TRACTOR, make_ctx

HOURLY = [PricingRuleItem(metric=PricingMetric.PER_HOUR, rate=450.0)]


async def _register(engine, ctx, **kwargs):
    return await engine.devices.register_device(
        ctx,
        name=kwargs.get("name", "Swaraj 744"),
        device_type=kwargs.get("device_type", TRACTOR),
        pincode=kwargs.get("pincode", PINCODE),
        location=GeoPoint(latitude=ORIGIN[0], longitude=ORIGIN[1]),
    )


@pytest.mark.asyncio
async def test_register_to_live(make_engine, admin_ctx, dispatcher, audit_sink):
    engine = make_engine()
    device = await _register(engine, admin_ctx)
    assert device.status == DeviceStatus.DRAFT

    status = await engine.devices.pricing_status(device.device_id)
    assert status.requires_pricing_rule

    setup = await engine.devices.configure_pricing(
        admin_ctx,
        device.device_id,
        HOURLY,
        [
            TimeWindowRates(
                rules=[PricingRuleItem(metric=PricingMetric.PER_HOUR, rate=600.0)],
                effective_from=date(2030, 10, 1),
                effective_to=date(2030, 10, 31),
            )
        ],
    )
    assert setup.default_rule.is_default
    assert len(setup.time_specific_rules) == 1
    assert setup.conflicts == []
    assert not (await engine.devices.pricing_status(device.device_id)).requires_pricing_rule

    live = await engine.devices.finalize(admin_ctx, device.device_id, OnboardingAction.TAKE_LIVE)
    assert live.status == DeviceStatus.LIVE
    assert live.version == device.version + 1

    await engine.commit()
    await dispatcher.drain()
    assert [(r.entity_type, r.action) for r in audit_sink.records] == [
        (AuditEntityType.DEVICE, AuditAction.CREATED),
        (AuditEntityType.DEVICE, AuditAction.STATUS_CHANGED),
    ]
    assert (audit_sink.records[1].from_state, audit_sink.records[1].to_state) == ("draft", "live")


@pytest.mark.asyncio
async def test_going_live_requires_default_rule(make_engine, admin_ctx):
    engine = make_engine()
    device = await _register(engine, admin_ctx)

    with pytest.raises(PricingRuleRequired):
        await engine.devices.finalize(admin_ctx, device.device_id, OnboardingAction.TAKE_LIVE)

    onboarded = await engine.devices.finalize(admin_ctx, device.device_id, OnboardingAction.ONBOARD)
    assert onboarded.status == DeviceStatus.ONBOARDED


@pytest.mark.asyncio
async def test_unscoped_device_cannot_be_priced_or_go_live(make_engine, admin_ctx):
    engine = make_engine()
    device = await _register(engine, admin_ctx, pincode=None)

    with pytest.raises(ValidationFailed):
        await engine.devices.configure_pricing(admin_ctx, device.device_id, HOURLY)
    with pytest.raises(ValidationFailed):
        await engine.devices.change_status(admin_ctx, device.device_id, DeviceStatus.LIVE)


@pytest.mark.asyncio
async def test_inverted_window_writes_nothing(make_engine, session, seed, admin_ctx):
    engine = make_engine()
    device = await _register(engine, admin_ctx)

    with pytest.raises(ValidationFailed):
        await engine.devices.configure_pricing(
            admin_ctx,
            device.device_id,
            HOURLY,
            [TimeWindowRates(rules=HOURLY, effective_from=date(2030, 5, 2), effective_to=date(2030, 5, 1))],
        )

    assert await seed.rules.get_default(TRACTOR, PINCODE) is None


@pytest.mark.asyncio
async def test_second_default_for_scope_refused(make_engine, seed, admin_ctx):
    await seed.default_rule()
    engine = make_engine()
    device = await _register(engine, admin_ctx)

    with pytest.raises(DuplicateDefaultRule):
        await engine.devices.configure_pricing(admin_ctx, device.device_id, HOURLY)


@pytest.mark.asyncio
async def test_overlapping_windows_reported(make_engine, seed, admin_ctx):
    existing = await seed.windowed_rule(date(2030, 3, 1), date(2030, 3, 31), hourly=520.0)
    engine = make_engine()
    device = await _register(engine, admin_ctx)

    setup = await engine.devices.configure_pricing(
        admin_ctx,
        device.device_id,
        HOURLY,
        [TimeWindowRates(rules=HOURLY, effective_from=date(2030, 3, 15), effective_to=date(2030, 4, 15))],
    )

    assert [c.rule_id for c in setup.conflicts] == [existing.rule_id]
    assert len(setup.time_specific_rules) == 1


@pytest.mark.asyncio
async def test_status_changes(make_engine, seed, admin_ctx):
    device = await seed.priced_device()
    engine = make_engine()

    maintenance = await engine.devices.change_status(
        admin_ctx, device.device_id, DeviceStatus.UNDER_MAINTENANCE
    )
    assert maintenance.status == DeviceStatus.UNDER_MAINTENANCE

    # Same status is a no-op, not a version bump
    again = await engine.devices.change_status(
        admin_ctx, device.device_id, DeviceStatus.UNDER_MAINTENANCE
    )
    assert again.version == maintenance.version

    retired = await engine.devices.change_status(admin_ctx, device.device_id, DeviceStatus.RETIRED)
    assert retired.status == DeviceStatus.RETIRED
    with pytest.raises(DeviceRetired):
        await engine.devices.change_status(admin_ctx, device.device_id, DeviceStatus.LIVE)


@pytest.mark.asyncio
async def test_status_change_conflict(make_engine, seed, admin_ctx):
    device = await seed.priced_device()
    await seed.devices.update_status(device.device_id, DeviceStatus.NOT_LIVE, device.version)
    engine = make_engine()

    with pytest.raises(ConcurrentModification):
        await engine.devices._set_status(admin_ctx, device, DeviceStatus.UNDER_MAINTENANCE)


@pytest.mark.asyncio
async def test_admin_only_operations(make_engine, seed, farmer_ctx):
    device = await seed.priced_device()
    engine = make_engine()

    with pytest.raises(ForbiddenError):
        await _register(engine, farmer_ctx)
    with pytest.raises(AuthenticationRequired):
        await _register(engine, make_ctx(None))
    with pytest.raises(ForbiddenError):
        await engine.devices.change_status(farmer_ctx, device.device_id, DeviceStatus.NOT_LIVE)
    with pytest.raises(ForbiddenError):
        await engine.devices.save_threshold(farmer_ctx, TRACTOR, 8, 5)
    with pytest.raises(ForbiddenError):
        await engine.devices.list_devices(farmer_ctx)


@pytest.mark.asyncio
async def test_register_requires_name(make_engine, admin_ctx):
    with pytest.raises(ValidationFailed):
        await _register(make_engine(), admin_ctx, name="   ")


@pytest.mark.asyncio
async def test_list_devices_search(make_engine, seed, admin_ctx):
    await seed.device(name="Mahindra Arjun")
    await seed.device(name="Kubota Combine", device_type="harvester")
    await seed.device(name="Sonalika", status=DeviceStatus.DRAFT)
    engine = make_engine()

    by_name = await engine.devices.list_devices(admin_ctx, search="MAHINDRA")
    by_type = await engine.devices.list_devices(admin_ctx, search="harv")
    drafts = await engine.devices.list_devices(admin_ctx, status=DeviceStatus.DRAFT)

    assert [d.name for d in by_name] == ["Mahindra Arjun"]
    assert [d.name for d in by_type] == ["Kubota Combine"]
    assert [d.name for d in drafts] == ["Sonalika"]


@pytest.mark.asyncio
async def test_pricing_rule_administration(make_engine, admin_ctx, distributor_ctx):
    engine = make_engine()
    draft = PricingRuleDraft(
        device_type=TRACTOR, pincode=PINCODE, rules=HOURLY, effective_from=date(2024, 1, 1)
    )

    with pytest.raises(ForbiddenError):
        await engine.devices.create_pricing_rule(distributor_ctx, draft)

    created = await engine.devices.create_pricing_rule(admin_ctx, draft)
    deactivated = await engine.devices.deactivate_pricing_rule(admin_ctx, created.rule.rule_id)
    assert deactivated.status == RuleStatus.INACTIVE


@pytest.mark.asyncio
async def test_thresholds(make_engine, admin_ctx):
    engine = make_engine()

    with pytest.raises(ThresholdConfigNotFound):
        await engine.pricing.get_threshold(TRACTOR)

    await engine.devices.save_threshold(admin_ctx, TRACTOR, 8, 5)
    updated = await engine.devices.save_threshold(admin_ctx, TRACTOR, 10, 4)

    stored = await engine.pricing.get_threshold(TRACTOR)
    assert (stored.max_rental_hours, stored.max_rental_acres) == (10, 4)
    assert updated.status == RuleStatus.ACTIVE


@pytest.mark.asyncio
async def test_distributor_profiles(make_engine, admin_ctx, distributor_ctx, farmer_ctx):
    engine = make_engine()

    own = await engine.devices.create_distributor_profile(
        distributor_ctx, distributor_ctx.user_id, "Green Fields Agro", PINCODE
    )
    assert (await engine.devices.get_distributor_profile(own.distributor_id)).user_id == distributor_ctx.user_id

    with pytest.raises(PreconditionFailed) as exc_info:
        await engine.devices.create_distributor_profile(admin_ctx, distributor_ctx.user_id, "Again")
    assert exc_info.value.code == "DISTRIBUTOR_PROFILE_EXISTS"

    with pytest.raises(ForbiddenError):
        await engine.devices.create_distributor_profile(distributor_ctx, "dist-user-9", "Not mine")
    with pytest.raises(ForbiddenError):
        await engine.devices.create_distributor_profile(farmer_ctx, farmer_ctx.user_id, "Farmer")

    other = await engine.devices.create_distributor_profile(
        admin_ctx, "dist-user-9", "Admin-made Agro"
    )
    assert other.user_id == "dist-user-9"

    with pytest.raises(DistributorProfileNotFound):
        await engine.devices.get_distributor_profile("missing")


@pytest.mark.asyncio
async def test_audit_trail_requires_admin(make_engine, admin_ctx):
    engine = make_engine()
    with pytest.raises(ForbiddenError):
        await engine.devices.audit_trail(make_ctx("x", UserRole.FARMER), AuditEntityType.ORDER, "1")
    assert await engine.devices.audit_trail(admin_ctx, AuditEntityType.ORDER, "1") == []


@pytest.mark.asyncio
async def test_unknown_device(make_engine, admin_ctx):
    with pytest.raises(DeviceNotFound):
        await make_engine().devices.finalize(admin_ctx, uuid4(), OnboardingAction.ONBOARD)
