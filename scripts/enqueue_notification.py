from __future__ import annotations

import argparse
import asyncio
import sys

from pushrelay.persistence.db import SessionLocal, engine
from pushrelay.persistence.repos.jobs import enqueue_notification
from pushrelay.persistence.repos.subscriptions import upsert_subscription


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Enqueue a push notification job or register a subscription")
    sub = parser.add_subparsers(dest="command", required=True)

    notify = sub.add_parser("notify", help="Insert a pending notification job")
    notify.add_argument("--user-id", required=True, help="Target user identifier")
    notify.add_argument("--title", required=True)
    notify.add_argument("--body", required=True)
    notify.add_argument("--url", default=None, help="Optional deep link opened on click")

    subscribe = sub.add_parser("subscribe", help="Register or refresh a push subscription")
    subscribe.add_argument("--user-id", required=True)
    subscribe.add_argument("--endpoint", required=True, help="Push service endpoint URL")
    subscribe.add_argument("--p256dh", required=True, help="Client public key (base64url)")
    subscribe.add_argument("--auth", required=True, help="Client auth secret (base64url)")
    subscribe.add_argument("--user-agent", default=None)
    return parser


async def _run(args: argparse.Namespace) -> int:
    try:
        async with SessionLocal() as session:
            if args.command == "notify":
                job = await enqueue_notification(
                    session,
                    user_id=args.user_id,
                    title=args.title,
                    body=args.body,
                    url=args.url,
                )
                await session.commit()
                print(f"job_id={job.id}")
            else:
                row = await upsert_subscription(
                    session,
                    user_id=args.user_id,
                    endpoint=args.endpoint,
                    p256dh=args.p256dh,
                    auth=args.auth,
                    user_agent=args.user_agent,
                )
                await session.commit()
                print(f"subscription_id={row.id}")
    finally:
        await engine.dispose()
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
