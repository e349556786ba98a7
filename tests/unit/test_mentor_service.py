from __future__ import annotations

from datetime import timedelta

import pytest

from careguard.exceptions import NotFound, OwnershipRequired, PermissionDenied, ValidationFailed
from careguard.models import AccessSchedule
from careguard.models.mentor_authorization import DEFAULT_MENTOR_PERMISSIONS, AllowedHours
from careguard.services.audit_service import RequestMeta
from careguard.services.identity import Caller
from careguard.services.mentor_service import AuthorizationInput, MentorService, validate_capabilities


def _caller(profile) -> Caller:
    return Caller.from_profile(profile)


@pytest.mark.unit
def test_validate_capabilities_is_all_or_nothing() -> None:
    assert validate_capabilities(["view_medications", "view_medications", "emergency_contact"]) == [
        "view_medications",
        "emergency_contact",
    ]
    with pytest.raises(ValidationFailed) as exc_info:
        validate_capabilities(["view_medications", "launch_rockets"])
    assert exc_info.value.field == "permissions"
    assert "launch_rockets" in exc_info.value.message


@pytest.mark.unit
@pytest.mark.asyncio
async def test_patient_self_authorization_defaults(services, org_world, audit_repo, clock) -> None:
    patient = org_world["patient1"]
    mentor = org_world["patient_mentor1"]

    authorization = await services.mentors.authorize_mentor(
        _caller(patient), mentor.id, patient.id, meta=RequestMeta(ip_address="192.168.0.8")
    )
    await services.audit.drain()

    assert authorization.status == "active"
    assert authorization.permissions == list(DEFAULT_MENTOR_PERMISSIONS)
    assert authorization.relationship == "other"
    assert authorization.authorized_by == patient.id
    assert authorization.consent.given_by == patient.id
    assert authorization.consent.ip_address == "192.168.0.8"
    assert authorization.access_schedule.start_date == clock.now

    entry = audit_repo.find_action("mentor_authorized")
    assert entry.resource_type == "mentor_authorization"
    assert entry.details["crossOrgAuth"] is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_patient_may_authorize_cross_org_mentor_with_flag(services, org_world, audit_repo) -> None:
    patient = org_world["patient1"]
    foreign_mentor = org_world["patient_mentor2"]

    authorization = await services.mentors.authorize_mentor(_caller(patient), foreign_mentor.id, patient.id)
    await services.audit.drain()

    assert authorization.status == "active"
    assert audit_repo.find_action("mentor_authorized").details["crossOrgAuth"] is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_admin_authorization_is_organization_scoped(services, org_world) -> None:
    admin = _caller(org_world["org_admin1"])

    with pytest.raises(ValidationFailed):
        await services.mentors.authorize_mentor(admin, org_world["patient_mentor2"].id, org_world["patient1"].id)

    super_admin = _caller(org_world["super_admin"])
    authorization = await services.mentors.authorize_mentor(
        super_admin, org_world["patient_mentor2"].id, org_world["patient1"].id
    )
    assert authorization.status == "active"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_authorization_gate_and_party_roles(services, org_world) -> None:
    patient = org_world["patient1"]
    mentor = org_world["patient_mentor1"]

    with pytest.raises(PermissionDenied):
        await services.mentors.authorize_mentor(_caller(org_world["caretaker1"]), mentor.id, patient.id)
    with pytest.raises(PermissionDenied):
        await services.mentors.authorize_mentor(_caller(org_world["patient2"]), mentor.id, patient.id)
    with pytest.raises(ValidationFailed):
        await services.mentors.authorize_mentor(_caller(patient), org_world["caretaker1"].id, patient.id)
    with pytest.raises(ValidationFailed):
        await services.mentors.authorize_mentor(
            _caller(patient), mentor.id, patient.id, AuthorizationInput(permissions=["view_medications", "bogus"])
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reauthorization_reactivates_same_grant(services, org_world, mentor_repo) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]

    first = await services.mentors.authorize_mentor(
        patient, mentor.id, patient.id, AuthorizationInput(permissions=["emergency_contact"], relationship="child")
    )
    revoked = await services.mentors.revoke_authorization(patient, mentor.id, patient.id, "暂停")
    renewed = await services.mentors.authorize_mentor(patient, mentor.id, patient.id)

    assert revoked.status == "revoked"
    assert renewed.id == first.id
    assert len(mentor_repo.items) == 1, "同一对导师与患者只保留一条记录"
    assert renewed.status == "active"
    assert renewed.revoked_at is None
    assert renewed.revocation_reason == ""
    assert renewed.permissions == list(DEFAULT_MENTOR_PERMISSIONS)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_revoke_is_idempotent_and_restamps(services, org_world, audit_repo, clock) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]
    await services.mentors.authorize_mentor(patient, mentor.id, patient.id)

    first = await services.mentors.revoke_authorization(patient, mentor.id, patient.id, "第一次")
    clock.advance(minutes=5)
    second = await services.mentors.revoke_authorization(_caller(mentor), mentor.id, patient.id, "第二次")
    await services.audit.drain()

    assert first.status == second.status == "revoked"
    assert second.revoked_at == clock.now
    assert second.revoked_by == mentor.id
    assert second.revocation_reason == "第二次"
    revocations = [entry for entry in audit_repo.entries if entry.action == "mentor_revoked"]
    assert [entry.details["previous_status"] for entry in revocations] == ["active", "revoked"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_revoke_requires_party_or_scoped_admin(services, org_world) -> None:
    patient = org_world["patient1"]
    mentor = org_world["patient_mentor1"]
    await services.mentors.authorize_mentor(_caller(patient), mentor.id, patient.id)

    with pytest.raises(PermissionDenied):
        await services.mentors.revoke_authorization(_caller(org_world["caretaker1"]), mentor.id, patient.id)
    with pytest.raises(ValidationFailed):
        await services.mentors.revoke_authorization(_caller(org_world["org_admin2"]), mentor.id, patient.id)
    with pytest.raises(NotFound):
        await services.mentors.revoke_authorization(_caller(patient), org_world["patient_mentor2"].id, patient.id)

    revoked = await services.mentors.revoke_authorization(_caller(org_world["care_manager1"]), mentor.id, patient.id)
    assert revoked.status == "revoked"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_permissions_rejects_whole_list(services, org_world, audit_repo) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]
    await services.mentors.authorize_mentor(patient, mentor.id, patient.id)

    with pytest.raises(ValidationFailed):
        await services.mentors.update_permissions(patient, mentor.id, patient.id, ["emergency_contact", "unknown"])
    stored = await services.mentors.authorizations.get(mentor.id, patient.id)
    assert stored.permissions == list(DEFAULT_MENTOR_PERMISSIONS), "校验失败时不应修改已存权限"

    updated = await services.mentors.update_permissions(patient, mentor.id, patient.id, ["emergency_contact"])
    await services.audit.drain()

    assert updated.permissions == ["emergency_contact"]
    entry = audit_repo.find_action("mentor_permissions_updated")
    assert entry.previous_values == {"permissions": list(DEFAULT_MENTOR_PERMISSIONS)}
    assert entry.new_values == {"permissions": ["emergency_contact"]}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_permissions_requires_existing_grant(services, org_world) -> None:
    patient = _caller(org_world["patient1"])

    with pytest.raises(NotFound):
        await services.mentors.update_permissions(
            patient, org_world["patient_mentor1"].id, patient.id, ["emergency_contact"]
        )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_has_permission_checks_status_capability_and_window(services, org_world, clock) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]
    schedule = AccessSchedule(end_date=clock.now + timedelta(days=1))
    await services.mentors.authorize_mentor(patient, mentor.id, patient.id, AuthorizationInput(access_schedule=schedule))

    assert await services.mentors.has_permission(mentor.id, patient.id, "view_medications") is True
    assert await services.mentors.has_permission(mentor.id, patient.id, "manage_medications") is False
    assert await services.mentors.has_permission(org_world["patient_mentor2"].id, patient.id, "view_medications") is False

    clock.advance(days=2)
    assert await services.mentors.has_permission(mentor.id, patient.id, "view_medications") is False, "窗口过期后应拒绝"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_has_permission_can_enforce_allowed_hours(mentor_repo, profiles, audit_repo, clock, services, org_world) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]
    schedule = AccessSchedule(allowed_hours=AllowedHours(start="18:00", end="21:00"))
    await services.mentors.authorize_mentor(patient, mentor.id, patient.id, AuthorizationInput(access_schedule=schedule))
    mentors = MentorService(mentor_repo, profiles, services.audit, clock=clock, timezone_name="UTC")

    assert await mentors.has_permission(mentor.id, patient.id, "view_medications") is True
    assert await mentors.has_permission(mentor.id, patient.id, "view_medications", enforce_hours=True) is False
    clock.now = clock.now.replace(hour=19)
    assert await mentors.has_permission(mentor.id, patient.id, "view_medications", enforce_hours=True) is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_list_visibility_rules(services, org_world) -> None:
    patient = org_world["patient1"]
    mentor = org_world["patient_mentor1"]
    await services.mentors.authorize_mentor(_caller(patient), mentor.id, patient.id)

    own = await services.mentors.list_mentor_patients(_caller(mentor), mentor.id)
    by_patient = await services.mentors.list_patient_mentors(_caller(patient), patient.id)
    by_admin = await services.mentors.list_patient_mentors(_caller(org_world["care_manager1"]), patient.id)

    assert [item.patient_id for item in own] == [patient.id]
    assert [item.mentor_id for item in by_patient] == [mentor.id]
    assert len(by_admin) == 1

    with pytest.raises(OwnershipRequired):
        await services.mentors.list_mentor_patients(_caller(org_world["patient_mentor2"]), mentor.id)
    with pytest.raises(PermissionDenied):
        await services.mentors.list_mentor_patients(_caller(org_world["caretaker1"]), mentor.id)
    with pytest.raises(OwnershipRequired):
        await services.mentors.list_patient_mentors(_caller(org_world["patient2"]), patient.id)
    with pytest.raises(OwnershipRequired):
        await services.mentors.list_mentor_patients(_caller(org_world["org_admin2"]), mentor.id)
    with pytest.raises(NotFound):
        await services.mentors.list_mentor_patients(_caller(org_world["super_admin"]), patient.id)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_access_log_is_capped(mentor_repo, profiles, audit_repo, clock, services, org_world) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]
    await services.mentors.authorize_mentor(patient, mentor.id, patient.id)
    mentors = MentorService(mentor_repo, profiles, services.audit, clock=clock, access_log_limit=3)

    for index in range(5):
        clock.advance(minutes=1)
        authorization = await mentors.log_mentor_access(
            mentor.id, patient.id, f"view_{index}", meta=RequestMeta(ip_address="10.0.0.9")
        )

    assert [item.action for item in authorization.access_log] == ["view_2", "view_3", "view_4"]
    assert authorization.access_log[-1].resource_id == patient.id
    assert authorization.access_log[-1].ip_address == "10.0.0.9"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_access_log_requires_active_grant(services, org_world) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]

    with pytest.raises(NotFound):
        await services.mentors.log_mentor_access(mentor.id, patient.id, "view")

    await services.mentors.authorize_mentor(patient, mentor.id, patient.id)
    await services.mentors.revoke_authorization(patient, mentor.id, patient.id)
    with pytest.raises(NotFound):
        await services.mentors.log_mentor_access(mentor.id, patient.id, "view")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_permission_check_limited_to_mentor_and_its_organization(services, org_world) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]
    await services.mentors.authorize_mentor(patient, mentor.id, patient.id)

    for allowed_caller in ("patient_mentor1", "care_manager1", "org_admin1", "super_admin"):
        assert await services.mentors.check_permission(
            _caller(org_world[allowed_caller]), mentor.id, patient.id, "view_medications"
        ), f"{allowed_caller} 应可查询"

    for denied_caller in ("caretaker2", "care_manager2", "patient_mentor2", "patient1", "caretaker1"):
        with pytest.raises(OwnershipRequired):
            await services.mentors.check_permission(
                _caller(org_world[denied_caller]), mentor.id, patient.id, "view_medications"
            )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_access_log_checks_caller_when_given(services, org_world) -> None:
    patient = _caller(org_world["patient1"])
    mentor = org_world["patient_mentor1"]
    await services.mentors.authorize_mentor(patient, mentor.id, patient.id)

    with pytest.raises(OwnershipRequired):
        await services.mentors.log_mentor_access(
            mentor.id, patient.id, "view_profile", caller=_caller(org_world["patient_mentor2"])
        )

    logged = await services.mentors.log_mentor_access(mentor.id, patient.id, "view_profile", caller=_caller(mentor))
    by_admin = await services.mentors.log_mentor_access(
        mentor.id, patient.id, "view_calls", caller=_caller(org_world["org_admin1"])
    )

    assert [item.action for item in logged.access_log] == ["view_profile"]
    assert [item.action for item in by_admin.access_log] == ["view_profile", "view_calls"]
