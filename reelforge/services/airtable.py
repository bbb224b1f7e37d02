"""
Airtable Service

Record store client: lists work items from the Generation table and writes
results and status back. Also reads the single-row Configuration table.

Usage:
    async with httpx.AsyncClient() as client:
        airtable = AirtableClient(token, base_id, client)
        items = await airtable.load_work_items()
        await airtable.update_record("Generation", items[0].id, {"Status": "Processing"})
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from reelforge.core.exceptions import RecordStoreError
from reelforge.core.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_API_URL = "https://api.airtable.com/v0"

PENDING_FILTER = (
    'AND(OR({Link} != "", {Source_Video} != ""), {AI_Character} != "", '
    '{Output_Video} = "", {Status} != "Processing")'
)
# For bases created before the Status column existed
PENDING_FILTER_WITHOUT_STATUS = 'AND(OR({Link} != "", {Source_Video} != ""), {AI_Character} != "", {Output_Video} = "")'


@dataclass
class WorkItem:
    """One row to process: its record id and the raw Airtable fields."""

    id: str
    fields: Dict[str, Any] = field(default_factory=dict)


class AirtableClient:
    def __init__(
        self,
        token: str,
        base_id: str,
        client: httpx.AsyncClient,
        table: str = "Generation",
        api_url: str = DEFAULT_API_URL,
    ):
        self.token = token
        self.base_id = base_id
        self.client = client
        self.table = table
        self.api_url = api_url.rstrip("/")

    def _table_url(self, table: str) -> str:
        return f"{self.api_url}/{self.base_id}/{quote(table, safe='')}"

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    async def fetch_records(
        self,
        table: str,
        filter_formula: str = "",
        fields: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """
        List every record in table matching filter_formula, following pagination.

        Raises:
            RecordStoreError: Airtable answered with a non-2xx status
        """
        records: List[Dict[str, Any]] = []
        offset: Optional[str] = None

        while True:
            params: List[tuple] = []
            if filter_formula:
                params.append(("filterByFormula", filter_formula))
            for name in fields:
                params.append(("fields[]", name))
            if offset:
                params.append(("offset", offset))

            response = await self.client.get(self._table_url(table), params=params, headers=self._headers)
            if not response.is_success:
                raise RecordStoreError(
                    f"Airtable error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            page = response.json()
            records.extend(page.get("records") or [])
            offset = page.get("offset")
            if not offset:
                break

        logger.debug("Fetched Airtable records", table=table, count=len(records))
        return records

    async def update_record(self, table: str, record_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        PATCH fields onto one record.

        Raises:
            RecordStoreError: Airtable answered with a non-2xx status
        """
        logger.debug("Updating Airtable record", table=table, record_id=record_id, fields=list(fields))

        response = await self.client.patch(
            f"{self._table_url(table)}/{record_id}",
            headers=self._headers,
            json={"fields": fields},
        )
        if not response.is_success:
            logger.error(
                "Airtable update failed",
                table=table,
                record_id=record_id,
                status=response.status_code,
                error=response.text[:500],
            )
            raise RecordStoreError(
                f"Airtable update error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        return response.json()

    async def load_work_items(self) -> List[WorkItem]:
        """Rows that have a source and a character but no output video yet."""
        logger.info("Loading records from Airtable", table=self.table)
        try:
            records = await self.fetch_records(self.table, PENDING_FILTER)
        except RecordStoreError as e:
            message = str(e)
            if "Unknown field names" not in message and "Status" not in message:
                raise
            logger.info("Status column missing, retrying without it", table=self.table)
            records = await self.fetch_records(self.table, PENDING_FILTER_WITHOUT_STATUS)

        logger.info("Records loaded", count=len(records))
        return [WorkItem(id=record["id"], fields=record.get("fields") or {}) for record in records]
