"""
Unit tests for booking inquiries
"""

from datetime import date, datetime, timezone

import pytest

from ensemble.integrations.firestore_client import DocumentReference
from ensemble.models.inquiry import Inquiry
from ensemble.models.profile import UserProfile
from ensemble.models.repository import DocumentNotFoundError
from ensemble.services.inquiries import NO_NAME, InquiryService, response_ref

PAYLOAD = {
    "name": "  Dana Park ",
    "email": "dana@example.com",
    "phone": "555-0100",
    "event": {"title": "Spring Gala", "date": "2025-05-02", "start": "19:00", "location": "Main Hall"},
    "meta": {"userAgent": "Mozilla/5.0", "tz": "America/New_York"},
}


@pytest.fixture
def inquiries(store, profiles, encryption_manager):
    return InquiryService(store, profiles, encryption_manager)


async def _inquiry(service, inquiry_id, day, title=None):
    payload = {"name": "Client", "email": "client@example.com", "event": {"title": title or inquiry_id, "date": day}}
    return await service.create_inquiry(payload, inquiry_id=inquiry_id)


class TestInquiryModel:
    """Test form payload handling"""

    def test_from_public_payload(self):
        inquiry = Inquiry.from_public_payload(PAYLOAD)

        assert inquiry.status == "new"
        assert inquiry.name == "Dana Park"
        assert inquiry.org is None
        assert inquiry.message is None
        assert inquiry.title == "Spring Gala"
        assert inquiry.client_name == "Dana Park"
        assert inquiry.location == "Main Hall"
        assert inquiry.date == datetime(2025, 5, 2, tzinfo=timezone.utc)
        assert inquiry.meta.user_agent == "Mozilla/5.0"

    def test_org_is_preferred_as_client_name(self):
        inquiry = Inquiry.from_public_payload({**PAYLOAD, "org": "Riverside Library"})
        assert inquiry.client_name == "Riverside Library"

    def test_undated_inquiry_does_not_store_date(self):
        inquiry = Inquiry.from_public_payload({"name": "Dana", "email": "dana@example.com"})

        assert inquiry.date is None
        assert inquiry.event.title is None
        assert "date" not in inquiry.to_dict()

    @pytest.mark.parametrize("payload", [
        {"name": "Dana", "email": "not-an-address"},
        {"name": "", "email": "dana@example.com"},
        {"email": "dana@example.com"},
    ])
    def test_required_contact_fields(self, payload):
        with pytest.raises(ValueError):
            Inquiry.from_public_payload(payload)


class TestInquiryService:
    """Test intake and member responses"""

    @pytest.mark.asyncio
    async def test_create_inquiry_encrypts_phone(self, inquiries, store):
        inquiry = await inquiries.create_inquiry(PAYLOAD)

        stored = await store.get_document(DocumentReference(collection="inquiries", document_id=inquiry.id))
        assert stored.data["status"] == "new"
        assert stored.data["clientName"] == "Dana Park"
        assert stored.data["phone"] != "555-0100"

        loaded = await inquiries.get_inquiry(inquiry.id)
        assert loaded.phone == "555-0100"
        assert loaded.event.location == "Main Hall"

    @pytest.mark.asyncio
    async def test_record_response_stores_bucket(self, inquiries, store):
        await _inquiry(inquiries, "q1", "2025-05-02")

        assert await inquiries.record_response("q1", "u1", "accepted", name="Ana Lee") == "yes"
        assert await inquiries.record_response("q1", "u2", "Maybe") == "maybe"

        stored = await store.get_document(response_ref("q1", "u1"))
        assert stored.data["userId"] == "u1"
        assert stored.data["response"] == "yes"
        assert stored.data["name"] == "Ana Lee"

    @pytest.mark.asyncio
    async def test_record_response_errors(self, inquiries):
        await _inquiry(inquiries, "q1", "2025-05-02")

        with pytest.raises(ValueError):
            await inquiries.record_response("q1", "u1", "unanswered")
        with pytest.raises(DocumentNotFoundError):
            await inquiries.record_response("ghost", "u1", "yes")


class TestInquiryReport:
    """Test the date range report"""

    @pytest.mark.asyncio
    async def test_range_is_inclusive_and_ordered(self, inquiries):
        await _inquiry(inquiries, "late", "2025-05-10T22:30:00Z")
        await _inquiry(inquiries, "early", "2025-05-01")
        await _inquiry(inquiries, "june", "2025-06-01")
        await inquiries.create_inquiry({"name": "Undated", "email": "u@example.com"})

        reports = await inquiries.fetch_inquiries_with_yes(date(2025, 5, 1), date(2025, 5, 10))
        assert [report.id for report in reports] == ["early", "late"]

        everything = await inquiries.fetch_inquiries_with_yes()
        assert [report.id for report in everything] == ["early", "late", "june"]

    @pytest.mark.asyncio
    async def test_reversed_range(self, inquiries):
        with pytest.raises(ValueError):
            await inquiries.fetch_inquiries_with_yes(date(2025, 6, 1), date(2025, 5, 1))

    @pytest.mark.asyncio
    async def test_only_yes_answers_are_listed(self, inquiries):
        await _inquiry(inquiries, "q1", "2025-05-02", title="Gala")
        await inquiries.record_response("q1", "u1", "yes", name="Ana Lee")
        await inquiries.record_response("q1", "u2", "no")
        await inquiries.record_response("q1", "u3", "tentative")

        [report] = await inquiries.fetch_inquiries_with_yes(date(2025, 5, 1), date(2025, 5, 31))

        assert report.title == "Gala"
        assert report.status == "new"
        assert report.yes_count == 1
        assert report.yes_list[0].user_id == "u1"

    @pytest.mark.asyncio
    async def test_names_filled_from_profiles(self, inquiries, profiles):
        await profiles.save(UserProfile(uid="u2", name="Ben Cho"))
        await _inquiry(inquiries, "q1", "2025-05-02")
        await inquiries.record_response("q1", "u1", "yes", name="Ana Lee")
        await inquiries.record_response("q1", "u2", "yes")
        await inquiries.record_response("q1", "u3", "yes")

        rows = await inquiries.report_rows(date(2025, 5, 1), date(2025, 5, 31))

        assert rows == [{
            "id": "q1",
            "title": "q1",
            "date": "2025-05-02T00:00:00+00:00",
            "status": "new",
            "clientName": "Client",
            "location": "",
            "yesCount": 3,
            "yesNames": f"Ana Lee; Ben Cho; {NO_NAME}",
        }]
