from __future__ import annotations

import os

import boto3

from hackvote.admin import AdminControlSurface
from hackvote.domain import User, normalize_code
from hackvote.store import DynamoDBStore


def _required_env(name: str) -> str:
    v = os.environ.get(name, "").strip()
    if not v:
        raise SystemExit(f"{name} is required")
    return v


def ensure_table(table_name: str) -> None:
    ddb = boto3.client("dynamodb")
    existing = ddb.list_tables().get("TableNames", [])
    if table_name in existing:
        print(f"Table already exists: {table_name}")
        return

    ddb.create_table(
        TableName=table_name,
        AttributeDefinitions=[
            {"AttributeName": "pk", "AttributeType": "S"},
            {"AttributeName": "sk", "AttributeType": "S"},
        ],
        KeySchema=[
            {"AttributeName": "pk", "KeyType": "HASH"},
            {"AttributeName": "sk", "KeyType": "RANGE"},
        ],
        BillingMode="PAY_PER_REQUEST",
    )
    ddb.get_waiter("table_exists").wait(TableName=table_name)
    print(f"Created table: {table_name}")


def main() -> None:
    """Create the single table, the event record and the first admin user."""

    table_name = _required_env("DDB_TABLE_NAME")
    event_id = os.environ.get("EVENT_ID", "hackathon").strip() or "hackathon"
    admin_code = normalize_code(_required_env("ADMIN_CODE"))

    ensure_table(table_name)

    store = DynamoDBStore(table_name=table_name, event_id=event_id)
    event = AdminControlSurface(store).init_event(os.environ.get("EVENT_TITLE", "Hackathon"))
    print(f"Event ready: {event.id} ({event.status})")

    if store.get_user(admin_code) is None:
        store.put_user(User(unique_code=admin_code, name="admin", role="admin"))
        print(f"Created admin user: {admin_code}")


if __name__ == "__main__":
    main()
