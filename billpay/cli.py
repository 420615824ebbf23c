import argparse
import json
import sys
import time

from billpay.config import load_settings
from billpay.db import Base, make_engine, make_session_factory
from billpay.services.reconcile import reconcile_bindings
from billpay.services.scheduler import build_scheduler
from billpay.utils.auth import _sign_jwt

import billpay.orm_models  # noqa: F401


def cmd_reconcile(args):
    s = load_settings()
    engine = make_engine(s.DATABASE_URL)
    try:
        scheduler = build_scheduler(s.scheduler_backend, engine)
        with make_session_factory(engine)() as db:
            report = reconcile_bindings(db, scheduler)
    finally:
        engine.dispose()
    print(json.dumps(report.as_dict()))
    if report.failed:
        sys.exit(2)


def cmd_init_db(args):
    """Create tables directly; for throwaway SQLite databases (use alembic elsewhere)."""
    s = load_settings()
    engine = make_engine(s.DATABASE_URL)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()
    print({"init_db": "ok", "url": engine.url.render_as_string(hide_password=True)})


def cmd_dev_token(args):
    s = load_settings()
    if not s.AUTH_JWT_SECRET:
        print("AUTH_JWT_SECRET is not set", file=sys.stderr)
        sys.exit(1)
    payload = {
        "sub": args.sub,
        "aud": s.AUTH_AUDIENCE,
        "exp": int(time.time()) + args.ttl,
    }
    if args.email:
        payload["email"] = args.email
    print(_sign_jwt(payload, s.AUTH_JWT_SECRET))


def main():
    p = argparse.ArgumentParser(prog="billpay")
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser(
        "reconcile", help="Rebind rules whose cron job is missing or stale; drop orphan jobs"
    ).set_defaults(fn=cmd_reconcile)
    sub.add_parser("init-db").set_defaults(fn=cmd_init_db)

    t = sub.add_parser("dev-token", help="Mint an HS256 bearer token for local testing")
    t.add_argument("--sub", required=True, help="Identity-provider user id (users.auth_user_id)")
    t.add_argument("--email")
    t.add_argument("--ttl", type=int, default=3600)
    t.set_defaults(fn=cmd_dev_token)

    args = p.parse_args()
    if not getattr(args, "cmd", None):
        p.print_help()
        sys.exit(1)
    args.fn(args)


if __name__ == "__main__":
    main()
