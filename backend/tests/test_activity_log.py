"""
Activity trail
"""
import pytest

from models import Actor
from activity_log_service import generate_document_description, generate_booking_description


ACTOR = Actor(id="user-1", role="manager", name="Mei Manager", username="mei")


def test_document_descriptions():
    document = {"document_number": "INV-2026-0001", "document_type": "invoice", "status": "issued"}

    assert generate_document_description("document:created", ACTOR, document) == \
        "Mei Manager created invoice INV-2026-0001"
    assert generate_document_description(
        "document:status_changed", ACTOR, document, {"new_status": "paid"}
    ) == "Mei Manager changed INV-2026-0001 status to paid"


def test_booking_descriptions():
    booking = {"booking_number": "BK-2026-0003", "guest_name": "Tan family", "status": "planning"}

    assert generate_booking_description("booking:created", ACTOR, booking) == \
        "Mei Manager created booking BK-2026-0003 for Tan family"
    assert generate_booking_description(
        "booking:status_changed", ACTOR, booking, {"previous_status": "draft", "new_status": "planning"}
    ) == "Mei Manager changed booking BK-2026-0003 status from draft to planning"
    assert generate_booking_description("booking:deleted", ACTOR, booking) == \
        "Mei Manager deleted booking BK-2026-0003"


@pytest.mark.asyncio
async def test_log_and_query(activity_log):
    entry = await activity_log.log_activity(
        "document:printed", ACTOR, "Mei printed INV-2026-0001",
        resource_id="doc-1", resource_type="document", metadata={"copies": 2}
    )
    await activity_log.log_activity("booking:card_printed", ACTOR, "card", resource_id="bk-1", resource_type="booking")

    assert entry["activity_id"]
    assert entry["username"] == "mei"

    document_logs = await activity_log.get_resource_activity("document", "doc-1")
    assert [log["type"] for log in document_logs] == ["document:printed"]
    assert document_logs[0]["metadata"] == {"copies": 2}

    by_user = await activity_log.get_activity_logs(user_id="user-1")
    assert len(by_user) == 2


@pytest.mark.asyncio
async def test_logging_failure_does_not_raise(activity_log, monkeypatch):
    async def broken_insert(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(activity_log.collection, "insert_one", broken_insert)

    assert await activity_log.log_activity("document:created", ACTOR, "x") is None
