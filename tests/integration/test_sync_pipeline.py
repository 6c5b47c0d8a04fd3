"""
End-to-end sync runs against in-memory Source and Target systems
"""

from datetime import date

import pytest

from schemas.results import OutcomeKind
from schemas.source import DateWindow, RecordKind

WINDOW = DateWindow.single_day(date(2024, 1, 14))


@pytest.mark.asyncio
async def test_new_member_sync_is_idempotent(runner_factory, sync_config, fake_source, fake_target, club, make_member):
    """
    Test: the same window synced twice creates each contact once and then
    only updates it
    """
    fake_source.set_pages("1234", "members", [
        [make_member("m1", "ann@example.com", first_name="Ann"),
         make_member("m2", "ben@example.com", first_name="Ben")],
        [make_member("m3", None, first_name="Cal"),
         make_member("m4", "staff@example.com", membership_type="Employee")],
    ])

    async with runner_factory(sync_config) as runner:
        first = await runner.run_sync(club, RecordKind.NEW_MEMBERS, WINDOW)
    async with runner_factory(sync_config) as runner:
        second = await runner.run_sync(club, RecordKind.NEW_MEMBERS, WINDOW)

    assert first.counts["created"] == 2
    assert first.counts["error"] == 1
    assert first.counts["skipped"] == 1
    assert second.counts["created"] == 0
    assert second.counts["updated"] == 2

    assert len(fake_target.contacts) == 2
    ann = fake_target.find("ann@example.com")[0]
    assert ann["tags"] == ["sale"]
    assert fake_target.custom_fields(ann["id"])["member_id"] == "m1"
    assert fake_target.find("staff@example.com") == []

    missing_email = [d for d in first.details if d.kind == OutcomeKind.ERROR][0]
    assert missing_email.source_identity == "m3"


@pytest.mark.asyncio
async def test_member_lifecycle_accumulates_tags(
    runner_factory, sync_config, fake_source, fake_target, club, make_member
):
    """
    Test: a member who signs up and later cancels keeps both tags, and the
    cancellation overwrites the member's custom fields
    """
    fake_source.set_pages("1234", "members", [[make_member("m1", "ann@example.com")]])
    async with runner_factory(sync_config) as runner:
        await runner.run_sync(club, RecordKind.NEW_MEMBERS, WINDOW)

    fake_source.set_pages("1234", "members", [[
        make_member(
            "m1", "ann@example.com",
            is_active="false",
            member_status="Cancelled",
            status_date="2024-03-02T10:15:00",
        )
    ]])
    async with runner_factory(sync_config) as runner:
        result = await runner.run_sync(
            club, RecordKind.CANCELLED_MEMBERS, DateWindow.single_day(date(2024, 3, 2))
        )

    assert result.counts["updated"] == 1
    contact = fake_target.find("ann@example.com")[0]
    assert set(contact["tags"]) == {"sale", "cancelled / past member"}
    fields = fake_target.custom_fields(contact["id"])
    assert fields["member_status"] == "Cancelled"
    assert fields["cancel_date"] == "2024-03-02T10:15:00"


@pytest.mark.asyncio
async def test_service_deactivation_only_tags_existing_contacts(
    runner_factory, sync_config, fake_source, fake_target, club, make_member, make_service
):
    """
    Test: deactivated services tag known contacts, never create contacts, and
    a second run reports already_tagged without writing
    """
    fake_target.add_contact("pt@example.com", tags=["pt current"], custom_fields={"membership_type": "Gold"})
    fake_source.add_member("1234", make_member("m1", "pt@example.com"))
    fake_source.add_member("1234", make_member("m2", "gone@example.com"))
    fake_source.set_pages("1234", "members/recurringservices", [[
        make_service("m1", status="Inactive", inactive_date="2024-01-14"),
        make_service("m2", status="Inactive", inactive_date="2024-01-14"),
    ]])

    async with runner_factory(sync_config) as runner:
        first = await runner.run_sync(club, RecordKind.SERVICE_DEACTIVATIONS, WINDOW)
    writes_after_first = len(fake_target.writes)
    async with runner_factory(sync_config) as runner:
        second = await runner.run_sync(club, RecordKind.SERVICE_DEACTIVATIONS, WINDOW)

    assert first.counts["updated"] == 1
    assert first.counts["not_found"] == 1
    assert second.counts["already_tagged"] == 1
    assert len(fake_target.writes) == writes_after_first

    contact = fake_target.find("pt@example.com")[0]
    assert set(contact["tags"]) == {"pt current", "pt past"}
    assert fake_target.custom_fields(contact["id"]) == {"membership_type": "Gold"}
    assert fake_target.find("gone@example.com") == []


@pytest.mark.asyncio
async def test_clubs_write_only_to_their_own_location(
    runner_factory, sync_config, fake_source, fake_target, club, second_club, make_member
):
    """
    Test: the same email at two clubs becomes one contact per location, each
    written with that club's credentials
    """
    fake_source.set_pages("1234", "members", [[make_member("a1", "shared@example.com")]])
    fake_source.set_pages("5678", "members", [[make_member("b1", "shared@example.com")]])

    async with runner_factory(sync_config) as runner:
        run = await runner.run_all([club, second_club], [RecordKind.NEW_MEMBERS], WINDOW)

    assert run.success is True
    assert run.totals["created"] == 2
    assert len(fake_target.find("shared@example.com", "loc_1")) == 1
    assert len(fake_target.find("shared@example.com", "loc_2")) == 1

    for request in fake_target.requests:
        location = request.url.params.get("locationId")
        if location == "loc_2":
            assert request.headers["Authorization"] == "Bearer pit_uptown"
        elif location == "loc_1":
            assert request.headers["Authorization"] == "Bearer pit_downtown"


@pytest.mark.asyncio
async def test_source_outage_for_one_kind_does_not_block_others(
    runner_factory, sync_config, fake_source, fake_target, club, make_member
):
    """
    Test: a Source failure is recorded for its batch and no partial records
    are written
    """
    fake_source.set_pages("1234", "members", [
        [make_member("m1", "a@example.com"), make_member("m2", "b@example.com")],
        [make_member("m3", "c@example.com")],
    ])
    fake_source.failures[("1234", "members", 2)] = 500
    fake_source.set_pages("1234", "members/recurringservices", [[]])

    async with runner_factory(sync_config) as runner:
        run = await runner.run_all(
            [club], [RecordKind.NEW_MEMBERS, RecordKind.SERVICE_ACTIVATIONS], WINDOW
        )

    assert [f.record_kind for f in run.failures] == ["new_members"]
    assert [b.record_kind for b in run.batches] == ["service_activations"]
    assert fake_target.writes == []
