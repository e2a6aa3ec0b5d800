#!/usr/bin/env python3
"""Emit deterministic SQL that registers the slot sweep worker's machine credentials."""

from __future__ import annotations

import argparse
import hashlib


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def render_sql(*, module_id: str, name: str, key_hash: str, scopes: list[str]) -> str:
    module_value = _quote_sql(module_id)
    scopes_value = "array[" + ", ".join(_quote_sql(scope) for scope in scopes) + "]::text[]"

    return f"""-- Slot sweep worker credential bootstrap SQL
-- Run this in a privileged Postgres session against the listings database.

insert into modules (module_id, name, kind, enabled, scopes)
values ({module_value}, {_quote_sql(name)}, 'scheduler', true, {scopes_value})
on conflict (module_id) do update
set enabled = true, scopes = excluded.scopes;

update module_credentials
set is_active = false, revoked_at = now()
where module_id = (select id from modules where module_id = {module_value})
  and is_active = true;

insert into module_credentials (module_id, key_hash, is_active)
select id, {_quote_sql(key_hash)}, true
from modules
where module_id = {module_value};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to register the slot sweep worker module.")
    parser.add_argument("--module-id", default="slot-sweeper", help="Value the worker sends as X-Module-Id")
    parser.add_argument("--name", default="Slot expiry sweeper", help="Human readable module name")
    key_group = parser.add_mutually_exclusive_group(required=True)
    key_group.add_argument("--api-key", help="Plain API key; only its sha256 digest is emitted")
    key_group.add_argument("--key-hash", help="Precomputed sha256 hex digest of the API key")
    parser.add_argument(
        "--scope",
        action="append",
        dest="scopes",
        help="Scope to grant (repeatable); defaults to slots:sweep",
    )
    args = parser.parse_args()

    key_hash = args.key_hash or hash_api_key(args.api_key)
    print(
        render_sql(
            module_id=args.module_id,
            name=args.name,
            key_hash=key_hash,
            scopes=args.scopes or ["slots:sweep"],
        )
    )


if __name__ == "__main__":
    main()
