from __future__ import annotations

import logging
import os
import threading
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal, Protocol, TypeVar

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError
from pydantic import BaseModel

from .domain import Event, Phase, Team, User, Vote, vote_key
from .errors import DuplicateRecordError, NotFoundError, TransactionContentionError

logger = logging.getLogger(__name__)

RecordKind = Literal["event", "team", "user", "vote"]
T = TypeVar("T")

DEFAULT_TX_MAX_ATTEMPTS = 5
# DynamoDB TransactWriteItems limit
TRANSACT_CHUNK = 100

EVENT_RESET_FIELDS: dict[str, Any] = {
    "status": "waiting",
    "phase1_selected_team_ids": [],
    "phase1_finalized_at": None,
    "final_ranking_overrides": [],
    "voting_deadline": None,
    "timer_duration_sec": None,
    "auto_close_enabled": False,
}


class Transaction(Protocol):
    """Serializable unit of work handed to `Store.run_transaction`.

    Reads observe the transaction's own pending writes. Nothing is visible to
    other callers until the callback returns and the store commits.
    """

    def read_field(self, kind: RecordKind, key: str, field: str) -> Any: ...

    def write_fields(self, kind: RecordKind, key: str, fields: dict[str, Any]) -> None: ...

    def create(self, kind: RecordKind, key: str, item: dict[str, Any]) -> None: ...

    def increment(self, kind: RecordKind, key: str, field: str, amount: int = 1) -> None: ...


class Store(Protocol):
    event_id: str

    def get_event(self) -> Event | None: ...

    def put_event(self, event: Event) -> None: ...

    def update_event(self, fields: dict[str, Any]) -> None: ...

    def list_teams(self) -> list[Team]: ...

    def get_team(self, team_id: str) -> Team | None: ...

    def get_teams(self, team_ids: Iterable[str]) -> dict[str, Team]: ...

    def put_team(self, team: Team) -> None: ...

    def update_team(self, team_id: str, fields: dict[str, Any]) -> None: ...

    def delete_team(self, team_id: str) -> None: ...

    def get_user(self, unique_code: str) -> User | None: ...

    def list_users(self) -> list[User]: ...

    def put_user(self, user: User) -> None: ...

    def update_user(self, unique_code: str, fields: dict[str, Any]) -> None: ...

    def delete_user(self, unique_code: str) -> None: ...

    def list_votes(self, phase: Phase | None = None) -> list[Vote]: ...

    def delete_votes_by_voter(self, voter_id: str) -> None: ...

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T: ...

    def reset_votes(self) -> None: ...

    def reset_phase2_votes(self) -> None: ...

    def reset_all(self) -> None: ...


def judge_counts(votes: Iterable[Vote]) -> Counter[str]:
    counts: Counter[str] = Counter()
    for vote in votes:
        if vote.role == "judge":
            counts.update(vote.selected_teams)
    return counts


_MODELS: dict[RecordKind, type[BaseModel]] = {
    "event": Event,
    "team": Team,
    "user": User,
    "vote": Vote,
}


@dataclass
class InMemoryStore(Store):
    event_id: str
    event: Event | None
    teams: dict[str, Team]
    users: dict[str, User]
    votes: dict[str, Vote]
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @classmethod
    def create(cls, event_id: str = "hackathon") -> "InMemoryStore":
        return cls(event_id=event_id, event=None, teams={}, users={}, votes={})

    def get_event(self) -> Event | None:
        return self.event

    def put_event(self, event: Event) -> None:
        with self._lock:
            self.event = event

    def update_event(self, fields: dict[str, Any]) -> None:
        with self._lock:
            if self.event is None:
                raise NotFoundError("event not found")
            self.event = self.event.model_copy(update=fields)

    def list_teams(self) -> list[Team]:
        with self._lock:
            return list(self.teams.values())

    def get_team(self, team_id: str) -> Team | None:
        return self.teams.get(team_id)

    def get_teams(self, team_ids: Iterable[str]) -> dict[str, Team]:
        with self._lock:
            return {tid: self.teams[tid] for tid in team_ids if tid in self.teams}

    def put_team(self, team: Team) -> None:
        with self._lock:
            self.teams[team.id] = team

    def update_team(self, team_id: str, fields: dict[str, Any]) -> None:
        with self._lock:
            team = self.teams.get(team_id)
            if team is None:
                raise NotFoundError(f"team not found: {team_id}")
            self.teams[team_id] = team.model_copy(update=fields)

    def delete_team(self, team_id: str) -> None:
        with self._lock:
            self.teams.pop(team_id, None)

    def get_user(self, unique_code: str) -> User | None:
        return self.users.get(unique_code)

    def list_users(self) -> list[User]:
        with self._lock:
            return list(self.users.values())

    def put_user(self, user: User) -> None:
        with self._lock:
            self.users[user.unique_code] = user

    def update_user(self, unique_code: str, fields: dict[str, Any]) -> None:
        with self._lock:
            user = self.users.get(unique_code)
            if user is None:
                raise NotFoundError(f"user not found: {unique_code}")
            self.users[unique_code] = user.model_copy(update=fields)

    def delete_user(self, unique_code: str) -> None:
        with self._lock:
            self.users.pop(unique_code, None)

    def list_votes(self, phase: Phase | None = None) -> list[Vote]:
        with self._lock:
            return [v for v in self.votes.values() if phase is None or v.phase is phase]

    def delete_votes_by_voter(self, voter_id: str) -> None:
        with self._lock:
            for phase in Phase:
                self.votes.pop(vote_key(phase, voter_id), None)

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        with self._lock:
            tx = _InMemoryTransaction(self)
            result = fn(tx)
            tx.apply()
            return result

    def reset_votes(self) -> None:
        with self._lock:
            self.votes.clear()
            for team_id, team in self.teams.items():
                self.teams[team_id] = team.model_copy(
                    update={"judge_vote_count": 0, "participant_vote_count": 0}
                )
            for code, user in self.users.items():
                self.users[code] = user.model_copy(
                    update={"has_voted": False, "has_voted_p1": False, "has_voted_p2": False}
                )

    def reset_phase2_votes(self) -> None:
        with self._lock:
            self.votes = {k: v for k, v in self.votes.items() if v.phase is not Phase.P2}
            counts = judge_counts(self.votes.values())
            for team_id, team in self.teams.items():
                self.teams[team_id] = team.model_copy(
                    update={"judge_vote_count": counts.get(team_id, 0)}
                )
            for code, user in self.users.items():
                self.users[code] = user.model_copy(update={"has_voted_p2": False})

    def reset_all(self) -> None:
        with self._lock:
            self.votes.clear()
            self.teams.clear()
            self.users = {c: u for c, u in self.users.items() if u.role == "admin"}
            if self.event is not None:
                self.event = self.event.model_copy(update=EVENT_RESET_FIELDS)

    def _records(self, kind: RecordKind) -> dict[str, Any]:
        if kind == "team":
            return self.teams
        if kind == "user":
            return self.users
        if kind == "vote":
            return self.votes
        return {self.event_id: self.event} if self.event is not None else {}


class _InMemoryTransaction:
    """Stages writes so an exception inside the callback leaves the store untouched."""

    def __init__(self, store: InMemoryStore) -> None:
        self._store = store
        self._created: dict[tuple[RecordKind, str], dict[str, Any]] = {}
        self._updates: dict[tuple[RecordKind, str], dict[str, Any]] = {}

    def _current(self, kind: RecordKind, key: str) -> dict[str, Any] | None:
        if (kind, key) in self._created:
            return {**self._created[(kind, key)], **self._updates.get((kind, key), {})}
        record = self._store._records(kind).get(key)
        if record is None:
            return None
        return {**record.model_dump(), **self._updates.get((kind, key), {})}

    def read_field(self, kind: RecordKind, key: str, field: str) -> Any:
        current = self._current(kind, key)
        return None if current is None else current.get(field)

    def write_fields(self, kind: RecordKind, key: str, fields: dict[str, Any]) -> None:
        if self._current(kind, key) is None:
            raise NotFoundError(f"{kind} not found: {key}")
        self._updates.setdefault((kind, key), {}).update(fields)

    def create(self, kind: RecordKind, key: str, item: dict[str, Any]) -> None:
        if self._current(kind, key) is not None:
            raise DuplicateRecordError(kind, key)
        self._created[(kind, key)] = dict(item)

    def increment(self, kind: RecordKind, key: str, field: str, amount: int = 1) -> None:
        current = self._current(kind, key)
        if current is None:
            raise NotFoundError(f"{kind} not found: {key}")
        self._updates.setdefault((kind, key), {})[field] = int(current.get(field) or 0) + amount

    def apply(self) -> None:
        for (kind, key), item in self._created.items():
            self._put(kind, key, _MODELS[kind].model_validate(item))
        for (kind, key), fields in self._updates.items():
            if (kind, key) in self._created:
                record = _MODELS[kind].model_validate({**self._created[(kind, key)], **fields})
            else:
                record = self._store._records(kind)[key].model_copy(update=fields)
            self._put(kind, key, record)

    def _put(self, kind: RecordKind, key: str, record: BaseModel) -> None:
        if kind == "event":
            self._store.event = record  # type: ignore[assignment]
        else:
            self._store._records(kind)[key] = record


class _RetryableConflict(Exception):
    pass


_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def to_dynamo(value: Any) -> Any:
    """JSON-mode pydantic output -> values DynamoDB accepts (floats as Decimal)."""

    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_dynamo(v) for v in value]
    return value


def from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


def _dump(model: BaseModel) -> dict[str, Any]:
    return to_dynamo(model.model_dump(mode="json"))


def _fields_for_dynamo(fields: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Phase):
            value = value.value
        out[name] = to_dynamo(value)
    return out


@dataclass
class _PendingItem:
    kind: RecordKind
    key: str
    create: dict[str, Any] | None = None
    sets: dict[str, Any] = field(default_factory=dict)
    adds: dict[str, int] = field(default_factory=dict)
    # field -> value observed by read_field (None means absent)
    guards: dict[str, Any] = field(default_factory=dict)
    guard_missing: bool = False
    must_exist: bool = False


class DynamoDBTransaction:
    """Optimistic transaction over TransactWriteItems.

    Every field read becomes a condition on the commit, so a concurrent writer
    that changed it cancels the commit and the callback is re-run.
    """

    def __init__(self, store: "DynamoDBStore") -> None:
        self._store = store
        self._snapshots: dict[tuple[RecordKind, str], dict[str, Any] | None] = {}
        self._pending: dict[tuple[RecordKind, str], _PendingItem] = {}

    def _item(self, kind: RecordKind, key: str) -> _PendingItem:
        return self._pending.setdefault((kind, key), _PendingItem(kind=kind, key=key))

    def _snapshot(self, kind: RecordKind, key: str) -> dict[str, Any] | None:
        if (kind, key) not in self._snapshots:
            resp = self._store.client.get_item(
                TableName=self._store.table_name,
                Key=self._store.typed_key(kind, key),
                ConsistentRead=True,
            )
            raw = resp.get("Item")
            self._snapshots[(kind, key)] = (
                None if raw is None else {k: _deserializer.deserialize(v) for k, v in raw.items()}
            )
        return self._snapshots[(kind, key)]

    def read_field(self, kind: RecordKind, key: str, field: str) -> Any:
        pending = self._item(kind, key)
        if field in pending.sets:
            return pending.sets[field]
        if pending.create is not None:
            return pending.create.get(field)

        snapshot = self._snapshot(kind, key)
        if snapshot is None:
            pending.guard_missing = True
            value = None
        else:
            value = from_dynamo(snapshot.get(field))
            pending.guards.setdefault(field, value)
        if field in pending.adds:
            value = int(value or 0) + pending.adds[field]
        return value

    def _require_existing(self, kind: RecordKind, key: str) -> _PendingItem:
        pending = self._item(kind, key)
        if pending.create is None:
            if (kind, key) in self._snapshots and self._snapshots[(kind, key)] is None:
                raise NotFoundError(f"{kind} not found: {key}")
            pending.must_exist = True
        return pending

    def write_fields(self, kind: RecordKind, key: str, fields: dict[str, Any]) -> None:
        self._require_existing(kind, key).sets.update(_fields_for_dynamo(fields))

    def create(self, kind: RecordKind, key: str, item: dict[str, Any]) -> None:
        self._item(kind, key).create = _fields_for_dynamo(item)

    def increment(self, kind: RecordKind, key: str, field: str, amount: int = 1) -> None:
        pending = self._require_existing(kind, key)
        pending.adds[field] = pending.adds.get(field, 0) + amount

    def build_transact_items(self) -> list[dict[str, Any]]:
        return [self._build_op(p) for p in self._pending.values()]

    def _build_op(self, p: _PendingItem) -> dict[str, Any]:
        table = self._store.table_name
        key = self._store.typed_key(p.kind, p.key)
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        conditions: list[str] = []

        if p.guard_missing and not p.must_exist:
            conditions.append("attribute_not_exists(pk)")
        for i, (name, value) in enumerate(p.guards.items()):
            names[f"#g{i}"] = name
            if value is None:
                conditions.append(f"attribute_not_exists(#g{i})")
            else:
                values[f":g{i}"] = _serializer.serialize(to_dynamo(value))
                conditions.append(f"#g{i} = :g{i}")

        if p.create is not None:
            item = {**p.create, **p.sets}
            typed = {k: _serializer.serialize(v) for k, v in item.items()}
            return {
                "Put": {
                    "TableName": table,
                    "Item": {**key, **typed},
                    "ConditionExpression": "attribute_not_exists(pk)",
                }
            }

        if p.sets or p.adds:
            clauses: list[str] = []
            set_parts = []
            for i, (name, value) in enumerate(p.sets.items()):
                names[f"#s{i}"] = name
                values[f":s{i}"] = _serializer.serialize(value)
                set_parts.append(f"#s{i} = :s{i}")
            if set_parts:
                clauses.append("SET " + ", ".join(set_parts))
            add_parts = []
            for i, (name, amount) in enumerate(p.adds.items()):
                names[f"#a{i}"] = name
                values[f":a{i}"] = _serializer.serialize(amount)
                add_parts.append(f"#a{i} :a{i}")
            if add_parts:
                clauses.append("ADD " + ", ".join(add_parts))
            if p.must_exist:
                conditions.append("attribute_exists(pk)")
            op: dict[str, Any] = {
                "TableName": table,
                "Key": key,
                "UpdateExpression": " ".join(clauses),
                "ExpressionAttributeNames": names,
                "ExpressionAttributeValues": values,
            }
            if conditions:
                op["ConditionExpression"] = " AND ".join(conditions)
            return {"Update": op}

        check: dict[str, Any] = {
            "TableName": table,
            "Key": key,
            "ConditionExpression": " AND ".join(conditions) or "attribute_exists(pk)",
        }
        if names:
            check["ExpressionAttributeNames"] = names
        if values:
            check["ExpressionAttributeValues"] = values
        return {"ConditionCheck": check}

    def commit(self) -> None:
        pending = list(self._pending.values())
        items = [self._build_op(p) for p in pending]
        if not items:
            return
        try:
            self._store.client.transact_write_items(TransactItems=items)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "TransactionCanceledException":
                self._raise_for_cancellation(pending, e.response.get("CancellationReasons", []))
            if code in (
                "TransactionConflictException",
                "TransactionInProgressException",
                "ProvisionedThroughputExceededException",
                "ThrottlingException",
            ):
                raise _RetryableConflict(code) from e
            raise

    @staticmethod
    def _raise_for_cancellation(pending: list[_PendingItem], reasons: list[dict[str, Any]]) -> None:
        for p, reason in zip(pending, reasons):
            if reason.get("Code") != "ConditionalCheckFailed":
                continue
            if p.create is not None:
                raise DuplicateRecordError(p.kind, p.key)
            if p.must_exist and not p.guards:
                raise NotFoundError(f"{p.kind} not found: {p.key}")
        raise _RetryableConflict("TransactionCanceledException")


@dataclass
class DynamoDBStore(Store):
    table_name: str
    event_id: str
    tx_max_attempts: int = DEFAULT_TX_MAX_ATTEMPTS
    _client: Any = None

    @classmethod
    def from_env(cls, event_id: str, tx_max_attempts: int = DEFAULT_TX_MAX_ATTEMPTS) -> "DynamoDBStore":
        table_name = os.environ.get("DDB_TABLE_NAME", "")
        if not table_name:
            raise RuntimeError("DDB_TABLE_NAME is required for dynamodb store")
        return cls(table_name=table_name, event_id=event_id, tx_max_attempts=tx_max_attempts)

    @property
    def _table(self):
        ddb = boto3.resource("dynamodb")
        return ddb.Table(self.table_name)

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("dynamodb")
        return self._client

    @property
    def _pk(self) -> str:
        return f"EVENT#{self.event_id}"

    def sort_key(self, kind: RecordKind, key: str) -> str:
        if kind == "event":
            return "META"
        return f"{kind.upper()}#{key}"

    def typed_key(self, kind: RecordKind, key: str) -> dict[str, Any]:
        return {"pk": {"S": self._pk}, "sk": {"S": self.sort_key(kind, key)}}

    def _get(self, kind: RecordKind, key: str) -> dict[str, Any] | None:
        resp = self._table.get_item(Key={"pk": self._pk, "sk": self.sort_key(kind, key)})
        item = resp.get("Item")
        return None if not item else _strip_keys(item)

    def _put(self, kind: RecordKind, key: str, model: BaseModel) -> None:
        self._table.put_item(Item={"pk": self._pk, "sk": self.sort_key(kind, key), **_dump(model)})

    def _update(self, kind: RecordKind, key: str, fields: dict[str, Any], must_exist: bool = True) -> None:
        if not fields:
            return
        names = {f"#f{i}": name for i, name in enumerate(fields)}
        values = {f":f{i}": value for i, value in enumerate(_fields_for_dynamo(fields).values())}
        kwargs: dict[str, Any] = {
            "Key": {"pk": self._pk, "sk": self.sort_key(kind, key)},
            "UpdateExpression": "SET " + ", ".join(f"#f{i} = :f{i}" for i in range(len(fields))),
            "ExpressionAttributeNames": names,
            "ExpressionAttributeValues": values,
        }
        if must_exist:
            kwargs["ConditionExpression"] = "attribute_exists(pk)"
        try:
            self._table.update_item(**kwargs)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
                raise NotFoundError(f"{kind} not found: {key}") from e
            raise

    def _query_prefix(self, prefix: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        kwargs: dict[str, Any] = {
            "KeyConditionExpression": Key("pk").eq(self._pk) & Key("sk").begins_with(prefix),
            "ConsistentRead": True,
        }
        while True:
            resp = self._table.query(**kwargs)
            items.extend(resp.get("Items", []))
            last = resp.get("LastEvaluatedKey")
            if not last:
                return items
            kwargs["ExclusiveStartKey"] = last

    def get_event(self) -> Event | None:
        item = self._get("event", self.event_id)
        return None if item is None else Event.model_validate(item)

    def put_event(self, event: Event) -> None:
        self._put("event", event.id, event)

    def update_event(self, fields: dict[str, Any]) -> None:
        self._update("event", self.event_id, fields)

    def list_teams(self) -> list[Team]:
        return [Team.model_validate(_strip_keys(it)) for it in self._query_prefix("TEAM#")]

    def get_team(self, team_id: str) -> Team | None:
        item = self._get("team", team_id)
        return None if item is None else Team.model_validate(item)

    def get_teams(self, team_ids: Iterable[str]) -> dict[str, Team]:
        ids = list(dict.fromkeys(team_ids))
        ddb = boto3.resource("dynamodb")
        found: dict[str, Team] = {}
        for start in range(0, len(ids), TRANSACT_CHUNK):
            keys = [{"pk": self._pk, "sk": self.sort_key("team", tid)} for tid in ids[start : start + TRANSACT_CHUNK]]
            request: dict[str, Any] = {self.table_name: {"Keys": keys, "ConsistentRead": True}}
            while request:
                resp = ddb.batch_get_item(RequestItems=request)
                for it in resp.get("Responses", {}).get(self.table_name, []):
                    team = Team.model_validate(_strip_keys(it))
                    found[team.id] = team
                request = resp.get("UnprocessedKeys") or {}
        return found

    def put_team(self, team: Team) -> None:
        self._put("team", team.id, team)

    def update_team(self, team_id: str, fields: dict[str, Any]) -> None:
        self._update("team", team_id, fields)

    def delete_team(self, team_id: str) -> None:
        self._table.delete_item(Key={"pk": self._pk, "sk": self.sort_key("team", team_id)})

    def get_user(self, unique_code: str) -> User | None:
        item = self._get("user", unique_code)
        return None if item is None else User.model_validate(item)

    def list_users(self) -> list[User]:
        return [User.model_validate(_strip_keys(it)) for it in self._query_prefix("USER#")]

    def put_user(self, user: User) -> None:
        self._put("user", user.unique_code, user)

    def update_user(self, unique_code: str, fields: dict[str, Any]) -> None:
        self._update("user", unique_code, fields)

    def delete_user(self, unique_code: str) -> None:
        self._table.delete_item(Key={"pk": self._pk, "sk": self.sort_key("user", unique_code)})

    def list_votes(self, phase: Phase | None = None) -> list[Vote]:
        prefix = "VOTE#" if phase is None else f"VOTE#{phase.value}#"
        return [Vote.model_validate(_strip_keys(it)) for it in self._query_prefix(prefix)]

    def delete_votes_by_voter(self, voter_id: str) -> None:
        with self._table.batch_writer() as batch:
            for phase in Phase:
                batch.delete_item(
                    Key={"pk": self._pk, "sk": self.sort_key("vote", vote_key(phase, voter_id))}
                )

    def run_transaction(self, fn: Callable[[Transaction], T]) -> T:
        for attempt in range(1, self.tx_max_attempts + 1):
            tx = DynamoDBTransaction(self)
            result = fn(tx)
            try:
                tx.commit()
            except _RetryableConflict as e:
                logger.debug("transaction conflict (%s), attempt %d/%d", e, attempt, self.tx_max_attempts)
                continue
            return result
        logger.error("transaction abandoned after %d attempts", self.tx_max_attempts)
        raise TransactionContentionError("the vote could not be recorded right now; please retry")

    def _transact_updates(self, kind: RecordKind, updates: list[tuple[str, dict[str, Any]]]) -> None:
        """Apply field updates in chunks, each chunk all-or-nothing."""

        for start in range(0, len(updates), TRANSACT_CHUNK):
            items = []
            for key, fields in updates[start : start + TRANSACT_CHUNK]:
                dyn = _fields_for_dynamo(fields)
                items.append(
                    {
                        "Update": {
                            "TableName": self.table_name,
                            "Key": self.typed_key(kind, key),
                            "UpdateExpression": "SET "
                            + ", ".join(f"#f{i} = :f{i}" for i in range(len(dyn))),
                            "ExpressionAttributeNames": {f"#f{i}": n for i, n in enumerate(dyn)},
                            "ExpressionAttributeValues": {
                                f":f{i}": _serializer.serialize(v) for i, v in enumerate(dyn.values())
                            },
                        }
                    }
                )
            self.client.transact_write_items(TransactItems=items)

    def _delete_prefix(self, prefix: str, keep: Callable[[dict[str, Any]], bool] | None = None) -> None:
        with self._table.batch_writer() as batch:
            for it in self._query_prefix(prefix):
                if keep is not None and keep(it):
                    continue
                batch.delete_item(Key={"pk": it["pk"], "sk": it["sk"]})

    def reset_votes(self) -> None:
        self._delete_prefix("VOTE#")
        self._transact_updates(
            "team",
            [(t.id, {"judge_vote_count": 0, "participant_vote_count": 0}) for t in self.list_teams()],
        )
        self._transact_updates(
            "user",
            [
                (u.unique_code, {"has_voted": False, "has_voted_p1": False, "has_voted_p2": False})
                for u in self.list_users()
            ],
        )

    def reset_phase2_votes(self) -> None:
        self._delete_prefix(f"VOTE#{Phase.P2.value}#")
        counts = judge_counts(self.list_votes())
        self._transact_updates(
            "team", [(t.id, {"judge_vote_count": counts.get(t.id, 0)}) for t in self.list_teams()]
        )
        self._transact_updates(
            "user", [(u.unique_code, {"has_voted_p2": False}) for u in self.list_users()]
        )

    def reset_all(self) -> None:
        self._delete_prefix("VOTE#")
        self._delete_prefix("TEAM#")
        self._delete_prefix("USER#", keep=lambda it: it.get("role") == "admin")
        if self.get_event() is not None:
            self.update_event(EVENT_RESET_FIELDS)


def _strip_keys(item: dict[str, Any]) -> dict[str, Any]:
    return from_dynamo({k: v for k, v in item.items() if k not in ("pk", "sk")})


def build_store(event_id: str, backend: str = "inmemory", tx_max_attempts: int = DEFAULT_TX_MAX_ATTEMPTS) -> Store:
    kind = backend.strip().lower()
    if kind == "dynamodb":
        return DynamoDBStore.from_env(event_id, tx_max_attempts=tx_max_attempts)
    return InMemoryStore.create(event_id)
