import copy
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from api.main import app
from api.services.ingestion_store import IngestionFilter
from api.services.review_engine import ReviewEngine, get_review_engine
from api.services.review_errors import UpstreamFailure


class InMemoryStore:
    """Stands in for IngestionStore: same methods, dict rows, no Supabase."""

    def __init__(self):
        self.ingestions: Dict[int, Dict[str, Any]] = {}
        self.invoices: Dict[int, Dict[str, Any]] = {}
        self.lines: Dict[int, Dict[str, Any]] = {}
        self.files: Dict[int, Dict[str, Any]] = {}
        self.catalog: List[Dict[str, Any]] = []
        self.vendors: List[Dict[str, Any]] = []
        self.candidates: List[Dict[str, Any]] = []
        self.fail_on = set()
        self.writes: List[tuple] = []

    def _check(self, name: str):
        if name in self.fail_on:
            raise UpstreamFailure(f"{name} failed")

    # ingestions
    def get_ingestion(self, ingestion_id):
        self._check("get_ingestion")
        row = self.ingestions.get(ingestion_id)
        return copy.deepcopy(row) if row else None

    def update_ingestion(self, ingestion_id, fields):
        self._check("update_ingestion")
        self.writes.append(("ingestion", ingestion_id, copy.deepcopy(fields)))
        self.ingestions[ingestion_id].update(copy.deepcopy(fields))

    def delete_ingestion(self, ingestion_id):
        self._check("delete_ingestion")
        self.writes.append(("delete", ingestion_id, None))
        self.ingestions.pop(ingestion_id, None)
        for inv_id in [i for i, inv in self.invoices.items() if inv["ingestion_id"] == ingestion_id]:
            self.invoices.pop(inv_id)
            for line_id in [l for l, line in self.lines.items() if line["invoice_id"] == inv_id]:
                self.lines.pop(line_id)

    def get_storage_key(self, file_id):
        self._check("get_storage_key")
        row = self.files.get(file_id)
        return row.get("storage_key") if row else None

    def _matches(self, row, flt: IngestionFilter):
        if flt.ready_only and not (row.get("approval_status") == "ready" and row.get("bill_payload_draft") is not None):
            return False
        if flt.status and row.get("status") != flt.status:
            return False
        if flt.created_since and row.get("created_at") < flt.created_since:
            return False
        return True

    def list_ingestions(self, flt, offset, limit):
        self._check("list_ingestions")
        rows = [r for r in self.ingestions.values() if self._matches(r, flt)]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        page = []
        for r in rows[offset:offset + limit]:
            row = copy.deepcopy(r)
            row["invoices"] = [
                {k: inv.get(k) for k in ("invoice_id", "vendor_name", "grand_total", "bill_number", "bill_date")}
                for inv in self.invoices.values()
                if inv["ingestion_id"] == r["ingestion_id"]
            ]
            page.append(row)
        return page, len(rows)

    def count_ingestions(self, flt):
        self._check("count_ingestions")
        self._check(f"count_ingestions:{flt.status or ('ready' if flt.ready_only else 'all')}")
        return len([r for r in self.ingestions.values() if self._matches(r, flt)])

    # invoices & lines
    def get_invoice(self, invoice_id):
        self._check("get_invoice")
        row = self.invoices.get(invoice_id)
        return copy.deepcopy(row) if row else None

    def get_invoice_for_ingestion(self, ingestion_id):
        self._check("get_invoice_for_ingestion")
        for inv in self.invoices.values():
            if inv["ingestion_id"] == ingestion_id:
                return copy.deepcopy(inv)
        return None

    def get_line(self, line_id):
        self._check("get_line")
        row = self.lines.get(line_id)
        return copy.deepcopy(row) if row else None

    def list_lines(self, invoice_id):
        self._check("list_lines")
        rows = [copy.deepcopy(l) for l in self.lines.values() if l["invoice_id"] == invoice_id]
        return sorted(rows, key=lambda l: l["line_no"])

    def update_line(self, line_id, fields):
        self._check("update_line")
        self.writes.append(("line", line_id, copy.deepcopy(fields)))
        self.lines[line_id].update(copy.deepcopy(fields))

    def list_candidates(self, line_id, top):
        self._check("list_candidates")
        # deliberately unordered: ordering is the caller's contract
        return [copy.deepcopy(c) for c in self.candidates if c["line_id"] == line_id]

    # catalog & vendors
    def search_catalog(self, org_id, query, limit, offset):
        self._check("search_catalog")
        q = (query or "").lower()
        rows = [
            c for c in self.catalog
            if c["org_id"] == org_id
            and (not q or q in (c.get("name") or "").lower() or q in (c.get("sku") or "").lower())
        ]
        rows.sort(key=lambda c: c.get("name") or "")
        return [copy.deepcopy(c) for c in rows[offset:offset + limit]]

    def lookup_item_names(self, org_id, item_ids):
        self._check("lookup_item_names")
        return {c["item_id"]: c.get("name") for c in self.catalog if c["org_id"] == org_id and c["item_id"] in item_ids}

    def lookup_vendor_names(self, org_id, vendor_ids):
        self._check("lookup_vendor_names")
        return {v["vendor_id"]: v.get("name") for v in self.vendors if v["org_id"] == org_id and v["vendor_id"] in vendor_ids}

    # seeding helpers
    def add_ingestion(self, ingestion_id, **fields):
        row = {
            "ingestion_id": ingestion_id,
            "org_id": "org_1",
            "created_at": "2026-10-01T00:00:00+00:00",
            "status": "matched",
            "approval_status": "pending",
            "approval_mode": "manual",
            "bill_payload_draft": None,
            "error": None,
            "file_id": None,
        }
        row.update(fields)
        self.ingestions[ingestion_id] = row
        return row

    def add_invoice(self, invoice_id, ingestion_id, **fields):
        row = {
            "invoice_id": invoice_id,
            "org_id": "org_1",
            "ingestion_id": ingestion_id,
            "vendor_name": None,
            "vendor_gstin": None,
            "bill_number": None,
            "bill_date": None,
            "grand_total": None,
            "currency": "INR",
        }
        row.update(fields)
        self.invoices[invoice_id] = row
        return row

    def add_line(self, line_id, invoice_id, line_no, match_state="unmatched", item_id=None, **fields):
        row = {
            "line_id": line_id,
            "invoice_id": invoice_id,
            "line_no": line_no,
            "description": f"line {line_no}",
            "quantity": 1,
            "rate": 10.0,
            "amount": 10.0,
            "item_name": None,
            "match_state": match_state,
            "item_id": item_id,
        }
        row.update(fields)
        self.lines[line_id] = row
        return row


@pytest.fixture
def store():
    """Ingestion 42: invoice 420 with lines [unmatched, to_create, unmatched] and a one-entry draft."""
    s = InMemoryStore()
    s.add_ingestion(
        42,
        bill_payload_draft={
            "vendor_id": "V-1",
            "bill_number": "INV-001",
            "line_items": [{"description": "Cement 50kg", "quantity": 2, "rate": 350.0}],
        },
        file_id=7,
    )
    s.files[7] = {"file_id": 7, "storage_key": "org_1/bills/42.pdf"}
    s.add_invoice(420, 42, vendor_name="Acme Supplies", bill_number="B-9", grand_total=1200.0)
    s.add_line(1, 420, 1, "unmatched")
    s.add_line(2, 420, 2, "to_create")
    s.add_line(3, 420, 3, "unmatched")
    s.catalog = [
        {"item_id": "ITEM-1", "org_id": "org_1", "name": "Cement OPC 50kg", "hsn8": "25232930", "sku": "CEM-50"},
        {"item_id": "ITEM-2", "org_id": "org_1", "name": "binding wire", "hsn8": "72171010", "sku": "WIRE-BND"},
        {"item_id": "ITEM-3", "org_id": "org_1", "name": "Aggregate 20mm", "hsn8": "25171010", "sku": "AGG-20"},
        {"item_id": "ITEM-X", "org_id": "org_2", "name": "Cement from another org", "hsn8": None, "sku": "CEM-X"},
    ]
    s.vendors = [{"vendor_id": "V-1", "org_id": "org_1", "name": "Acme Building Materials"}]
    return s


@pytest.fixture
def engine(store):
    return ReviewEngine(store)


@pytest.fixture
def client(engine):
    app.dependency_overrides[get_review_engine] = lambda: engine
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
