import os, sys
import itertools
import pytest
from postgrest.exceptions import APIError

# Ensure project root in path
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

import db

PKS = {
    "accounts": "account_id", "customer": "customer_id", "front_desk": "frontdesk_id",
    "manager": "manager_id", "admin": "admin_id", "billiard_table": "table_id",
    "billiard_table_info": "table_info_id", "qr_code": "qr_id", "UserRole": "role_id",
    "archived_users": "archive_id", "payment": "payment_id", "deact_user": "deact_id",
}


class FakeResult:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Just enough of the postgrest builder: filters, order, limit, CRUD."""

    def __init__(self, sb, table):
        self.sb, self.table = sb, table
        self.op, self.payload = "select", None
        self.filters, self.orders, self._limit = [], [], None

    def select(self, *cols, **kw):
        self.op = "select"
        return self

    def insert(self, rows):
        self.op, self.payload = "insert", rows
        return self

    def update(self, values):
        self.op, self.payload = "update", values
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, col, val):
        self.filters.append(lambda r: r.get(col) == val)
        return self

    def neq(self, col, val):
        self.filters.append(lambda r: r.get(col) != val)
        return self

    def in_(self, col, vals):
        self.filters.append(lambda r: r.get(col) in vals)
        return self

    def gte(self, col, val):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) >= val)
        return self

    def lte(self, col, val):
        self.filters.append(lambda r: r.get(col) is not None and r.get(col) <= val)
        return self

    def order(self, col, desc=False):
        self.orders.append((col, desc))
        return self

    def limit(self, n):
        self._limit = n
        return self

    def _match(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        if (self.table, self.op) in self.sb.fail:
            raise APIError({"message": f"{self.op} on {self.table} failed", "code": "500",
                            "hint": None, "details": None})
        rows = self.sb.tables.setdefault(self.table, [])
        self.sb.calls.append((self.table, self.op))
        if self.op == "insert":
            new = self.payload if isinstance(self.payload, list) else [self.payload]
            out = []
            pk = PKS.get(self.table, "id")
            for r in new:
                row = dict(r)
                row.setdefault(pk, next(self.sb.ids))
                rows.append(row)
                out.append(dict(row))
            return FakeResult(out)
        hits = [r for r in rows if self._match(r)]
        if self.op == "update":
            for r in hits:
                r.update(self.payload)
            return FakeResult([dict(r) for r in hits])
        if self.op == "delete":
            self.sb.tables[self.table] = [r for r in rows if not self._match(r)]
            return FakeResult([dict(r) for r in hits])
        for col, desc in reversed(self.orders):
            hits.sort(key=lambda r: (r.get(col) is None, r.get(col)), reverse=desc)
        if self._limit is not None:
            hits = hits[:self._limit]
        return FakeResult([dict(r) for r in hits])


class FakeRpc:
    def __init__(self, sb, name):
        self.sb, self.name = sb, name

    def execute(self):
        if (self.name, "rpc") in self.sb.fail:
            raise APIError({"message": f"{self.name} failed", "code": "500",
                            "hint": None, "details": None})
        return FakeResult(self.sb.rpc_results.get(self.name))


class FakeBucket:
    def __init__(self, sb, name):
        self.sb, self.name = sb, name

    def upload(self, path, file, file_options=None):
        if self.sb.storage_fail:
            raise RuntimeError("storage unavailable")
        self.sb.uploads.append((self.name, path, file, file_options))
        return {"Key": f"{self.name}/{path}"}

    def get_public_url(self, path):
        return f"https://fake.supabase.co/storage/v1/object/public/{self.name}/{path}"


class FakeStorage:
    def __init__(self, sb):
        self.sb = sb

    def from_(self, name):
        return FakeBucket(self.sb, name)


class FakeSupabase:
    def __init__(self):
        self.tables = {}
        self.fail = set()          # {(table, op)} or {(rpc_name, "rpc")}
        self.rpc_results = {}
        self.uploads = []
        self.storage_fail = False
        self.calls = []
        self.ids = itertools.count(1000)
        self.storage = FakeStorage(self)

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        return FakeRpc(self, name)

    def seed(self, table, rows):
        self.tables.setdefault(table, []).extend(dict(r) for r in rows)


@pytest.fixture
def fake_sb(monkeypatch):
    sb = FakeSupabase()
    monkeypatch.setattr(db, "get_supabase", lambda: sb)
    db.invalidate_references()
    yield sb
    db.invalidate_references()
