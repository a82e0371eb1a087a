import os
import re
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from supabase import PostgrestAPIError

os.environ.setdefault("PUBLIC_SUPABASE_URL", "https://linkup-test.supabase.co")
os.environ.setdefault("SECRET_API_KEY", "test-service-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")

from linkup.chat.conversations import ConversationRepository
from linkup.chat.messages import MessageRepository
from linkup.core.capabilities import Capabilities
from linkup.follows.service import FollowService
from linkup.profiles.service import ProfileService
from linkup.realtime.bridge import RealtimeBridge


EMBED_RE = re.compile(r"(\w+):(\w+)!(\w+)\(([^)]*)\)")

UNIQUE_KEYS = {
    "conversations": ("participant_1", "participant_2"),
    "follows": ("follower_id", "following_id"),
}

TABLE_DEFAULTS = {
    "messages": {"content": "", "media_url": None, "media_type": None, "is_read": False},
    "conversations": {"last_message": None, "last_message_at": None},
}


def api_error(code, message="simulated error"):
    return PostgrestAPIError({"code": code, "message": message, "hint": None, "details": None})


class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Just enough of the PostgREST query builder for the repositories."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.columns = "*"
        self.count = None
        self.payload = None
        self.filters = []
        self.orders = []
        self.row_limit = None
        self.head = False

    def select(self, *columns, count=None, head=False):
        self.op = "select"
        self.columns = ", ".join(columns) if columns else "*"
        self.count = count
        self.head = head
        return self

    def insert(self, payload):
        self.op = "insert"
        self.payload = payload
        return self

    def update(self, payload):
        self.op = "update"
        self.payload = payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def or_(self, expression):
        clauses = []
        for clause in expression.split(","):
            column, _, value = clause.split(".", 2)
            clauses.append((column, value))
        if not self.db.loose_or:
            self.filters.append(lambda row: any(row.get(c) == v for c, v in clauses))
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, size):
        self.row_limit = size
        return self

    def _matches(self, row):
        return all(check(row) for check in self.filters)

    def _project(self, row):
        embeds = EMBED_RE.findall(self.columns)
        plain = EMBED_RE.sub("", self.columns)
        names = [name.strip() for name in plain.split(",") if name.strip()]

        if "*" in names:
            projected = dict(row)
        else:
            projected = {name: row.get(name) for name in names}

        for alias, target, fkey, target_columns in embeds:
            local_column = fkey[len(self.table) + 1 : -len("_fkey")]
            target_row = self.db.find(target, row.get(local_column))
            if target_row is None:
                projected[alias] = None
            else:
                wanted = [c.strip() for c in target_columns.split(",") if c.strip()]
                projected[alias] = {c: target_row.get(c) for c in wanted}
        return projected

    async def execute(self):
        self.db.calls.append((self.table, self.op))
        self.db.raise_if_failing(self.table, self.op)

        if self.table in self.db.missing_tables:
            raise api_error("42P01", f'relation "public.{self.table}" does not exist')
        if "!" in self.columns and not self.db.relationships:
            raise api_error("PGRST200", "Could not find a relationship in the schema cache")

        rows = self.db.tables.setdefault(self.table, [])

        if self.op == "insert":
            payloads = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = [self.db.insert_row(self.table, payload) for payload in payloads]
            for row in inserted:
                self.db.emit("INSERT", self.table, row)
            return FakeResponse([dict(row) for row in inserted])

        matched = [row for row in rows if self._matches(row)]

        if self.op == "update":
            for row in matched:
                old = dict(row)
                row.update(self.payload)
                self.db.emit("UPDATE", self.table, row, old)
            return FakeResponse([dict(row) for row in matched])

        if self.op == "delete":
            for row in matched:
                rows.remove(row)
                self.db.emit("DELETE", self.table, {}, row)
            return FakeResponse([dict(row) for row in matched])

        for column, desc in reversed(self.orders):
            matched = sorted(matched, key=lambda r: str(r.get(column) or ""), reverse=desc)
        total = len(matched)
        if self.db.max_rows is not None:
            matched = matched[: self.db.max_rows]
        if self.row_limit is not None:
            matched = matched[: self.row_limit]

        count = total if self.count == "exact" else None
        if self.head:
            return FakeResponse([], count)
        return FakeResponse([self._project(row) for row in matched], count)


class FakeRpc:
    def __init__(self, db, name, params):
        self.db = db
        self.name = name
        self.params = params

    async def execute(self):
        self.db.calls.append((self.name, "rpc"))
        if self.db.rpc_error is not None:
            raise self.db.rpc_error
        if not self.db.rpc_available or self.name != "get_or_create_conversation_simple":
            raise api_error("PGRST202", f"Could not find the function public.{self.name}")

        p1, p2 = sorted([self.params["user1_id"], self.params["user2_id"]])
        for row in self.db.tables.setdefault("conversations", []):
            if row["participant_1"] == p1 and row["participant_2"] == p2:
                return FakeResponse(row["id"])
        row = self.db.insert_row("conversations", {"participant_1": p1, "participant_2": p2})
        self.db.emit("INSERT", "conversations", row)
        return FakeResponse(row["id"])


class FakeChannel:
    def __init__(self, name, subscribe_error=None):
        self.name = name
        self.bindings = []
        self.states = []
        self.removed = False
        self.subscribe_error = subscribe_error

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.bindings.append((event, table, filter, callback))
        return self

    async def subscribe(self, callback=None):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.states.append("SUBSCRIBED")
        if callback:
            callback("SUBSCRIBED", None)
        return self

    def dispatch(self, event, table, record, old_record):
        for bound_event, bound_table, row_filter, callback in self.bindings:
            if bound_table not in ("*", table) or bound_event not in ("*", event):
                continue
            if row_filter:
                column, _, value = row_filter.partition("=eq.")
                source = record or old_record
                if source.get(column) != value:
                    continue
            callback(
                {
                    "data": {
                        "type": event,
                        "table": table,
                        "schema": "public",
                        "record": dict(record),
                        "old_record": dict(old_record or {}),
                    },
                    "ids": [1],
                }
            )


class FakeSupabase:
    """In-memory stand-in for supabase.AsyncClient."""

    def __init__(self):
        self.tables = {"users": [], "conversations": [], "messages": [], "follows": []}
        self.relationships = True
        self.rpc_available = True
        self.rpc_error = None
        self.missing_tables = set()
        # PostgREST max-rows: caps returned data, never the exact count
        self.max_rows = None
        # or_() filters ignored, like a policy that returns extra rows
        self.loose_or = False
        self.subscribe_error = None
        self.failures = {}
        self.calls = []
        self.channels = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self):
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def fail(self, table, op, error):
        self.failures[(table, op)] = error

    def raise_if_failing(self, table, op):
        error = self.failures.get((table, op))
        if error is not None:
            raise error

    def find(self, table, row_id):
        for row in self.tables.get(table, []):
            if row.get("id") == row_id:
                return row
        return None

    def insert_row(self, table, payload):
        row = dict(TABLE_DEFAULTS.get(table, {}))
        row.update(payload)
        row.setdefault("id", str(uuid.uuid4()))
        row.setdefault("created_at", self.now())
        if table == "conversations":
            row.setdefault("updated_at", row["created_at"])

        key = UNIQUE_KEYS.get(table)
        if key:
            for existing in self.tables.setdefault(table, []):
                if all(existing.get(k) == row.get(k) for k in key):
                    raise api_error("23505", "duplicate key value violates unique constraint")

        self.tables.setdefault(table, []).append(row)
        return row

    def add_user(self, user_id, name, **fields):
        row = {"id": user_id, "name": name, "created_at": self.now(), **fields}
        self.tables["users"].append(row)
        return row

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params):
        return FakeRpc(self, name, params)

    def channel(self, name):
        channel = FakeChannel(name, self.subscribe_error)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel):
        channel.removed = True
        if channel in self.channels:
            self.channels.remove(channel)

    def emit(self, event, table, record, old_record=None):
        for channel in list(self.channels):
            channel.dispatch(event, table, record, old_record or {})


@pytest.fixture()
def db():
    fake = FakeSupabase()
    fake.add_user("alice", "Alice", username="alice", email="alice@example.com")
    fake.add_user("bob", "Bob", username="bob", bio="hi there", phoneNumber="555-0100")
    fake.add_user("carol", "Carol", username="carol")
    return fake


@pytest.fixture()
def capabilities():
    return Capabilities()


@pytest.fixture()
def profiles(db):
    return ProfileService(db, "users")


@pytest.fixture()
def conversations(db, profiles, capabilities):
    return ConversationRepository(db, profiles, capabilities)


@pytest.fixture()
def messages(db, profiles, conversations, capabilities):
    return MessageRepository(db, profiles, conversations, capabilities)


@pytest.fixture()
def follows(db, profiles, capabilities):
    return FollowService(db, profiles, capabilities)


@pytest.fixture()
def bridge(db, messages):
    return RealtimeBridge(db, messages)
