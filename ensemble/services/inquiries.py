"""
Client booking inquiries: intake, member responses and the date range report
"""

import logging
from collections.abc import Mapping
from datetime import date, datetime, time, timezone
from typing import Any, List, Optional

from ..integrations.firestore_client import (
    DocumentReference,
    FirestoreClient,
    FirestoreQuery,
    QueryFilter,
    QueryOrder,
)
from ..models.event import to_datetime, utcnow
from ..models.inquiry import UNTITLED_INQUIRY, Inquiry, InquiryReport, YesResponse
from ..models.repository import DocumentNotFoundError, EncryptionManager, InquiryRepository, ProfileRepository
from ..models.rsvp import legacy_bucket

logger = logging.getLogger(__name__)

NO_NAME = "(no name)"


def _day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _day_end(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def response_ref(inquiry_id: str, uid: str) -> DocumentReference:
    return DocumentReference(collection="responses", document_id=uid, parent_path=f"inquiries/{inquiry_id}")


class InquiryService:
    """出演依頼の受付・回答・レポート"""

    def __init__(
        self,
        client: FirestoreClient,
        profiles: Optional[ProfileRepository] = None,
        encryption_manager: Optional[EncryptionManager] = None
    ):
        self.client = client
        self.repository = InquiryRepository(client, encryption_manager)
        self.profiles = profiles

    async def create_inquiry(self, payload: Mapping, inquiry_id: Optional[str] = None) -> Inquiry:
        """公開フォームから依頼を登録（status は常に new）"""
        inquiry = Inquiry.from_public_payload(payload)
        if inquiry_id:
            inquiry.id = inquiry_id
        await self.repository.create(inquiry)
        logger.info(f"依頼受付: {inquiry.id} ({inquiry.client_name})")
        return inquiry

    async def get_inquiry(self, inquiry_id: str) -> Inquiry:
        inquiry = await self.repository.get_by_id(inquiry_id)
        if inquiry is None:
            raise DocumentNotFoundError(f"Inquiry {inquiry_id} not found")
        return inquiry

    async def record_response(self, inquiry_id: str, uid: str, response: Any, name: Optional[str] = None) -> str:
        """
        Record a member's answer to an inquiry.

        ``response`` may use either vocabulary (``accepted``/``yes``...); it is
        stored as its yes/maybe/no bucket. Returns the stored value.
        """
        bucket = legacy_bucket(response)
        if bucket is None:
            raise ValueError(f"Unknown inquiry response: {response!r}")
        if not uid:
            raise ValueError("uid must not be empty")
        if not await self.repository.exists(inquiry_id):
            raise DocumentNotFoundError(f"Inquiry {inquiry_id} not found")

        data = {"userId": uid, "response": bucket, "updatedAt": utcnow()}
        if name:
            data["name"] = name
        await self.client.set_document(response_ref(inquiry_id, uid), data, merge=True)
        logger.info(f"依頼回答: {inquiry_id}/{uid} -> {bucket}")
        return bucket

    async def fetch_yes_responses(self, inquiry_id: str) -> List[YesResponse]:
        snapshots = await self.client.query_documents(FirestoreQuery(
            collection="responses",
            parent_path=f"inquiries/{inquiry_id}",
            filters=[QueryFilter(field="response", operator="==", value="yes")],
        ))
        return [
            YesResponse(
                user_id=snapshot.data.get("userId") or snapshot.document_id,
                name=snapshot.data.get("name"),
                updated_at=to_datetime(snapshot.data.get("updatedAt")),
            )
            for snapshot in snapshots
        ]

    async def fetch_inquiries_with_yes(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None
    ) -> List[InquiryReport]:
        """
        Inquiries dated within [start, end] (whole UTC days), oldest first,
        each with the members who answered yes.

        Inquiries without a ``date`` never match the range query, so they are
        left out even when no bounds are given.
        """
        if start and end and start > end:
            raise ValueError("start must not be after end")

        filters = []
        if start:
            filters.append(QueryFilter(field="date", operator=">=", value=_day_start(start)))
        if end:
            filters.append(QueryFilter(field="date", operator="<=", value=_day_end(end)))
        snapshots = await self.client.query_documents(FirestoreQuery(
            collection="inquiries",
            filters=filters,
            orders=[QueryOrder(field="date", direction="asc")],
        ))

        reports = []
        for snapshot in snapshots:
            data = snapshot.data
            reports.append(InquiryReport(
                id=snapshot.document_id,
                title=data.get("title") or (data.get("event") or {}).get("title") or UNTITLED_INQUIRY,
                date=to_datetime(data.get("date")),
                status=data.get("status"),
                client_name=data.get("clientName") or data.get("org") or data.get("name"),
                location=data.get("location"),
                yes_list=await self.fetch_yes_responses(snapshot.document_id),
            ))

        logger.info(f"依頼レポート: {len(reports)} 件")
        return reports

    async def hydrate_names(self, reports: List[InquiryReport]) -> List[InquiryReport]:
        """回答に名前が無いメンバーをプロフィールから補完"""
        if self.profiles is None:
            return reports

        missing = [response.user_id for report in reports for response in report.yes_list if not response.name]
        found = await self.profiles.get_many(missing) if missing else {}

        for report in reports:
            for response in report.yes_list:
                if response.name:
                    continue
                profile = found.get(response.user_id)
                response.name = (profile.display_name if profile else "") or NO_NAME
        return reports

    async def report_rows(self, start: Optional[date] = None, end: Optional[date] = None) -> List[dict]:
        reports = await self.hydrate_names(await self.fetch_inquiries_with_yes(start, end))
        return [report.to_row() for report in reports]
