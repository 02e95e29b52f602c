"""
Command line entry point
Runs a cycle or inspects health and subscribers: python -m marketwire <command>
"""

import argparse
import json
import sys

from loguru import logger

from marketwire.config import load_settings
from marketwire.mainflow import build_ledger, execute
from marketwire.storage import StorageError, SubscriberRegistry, build_store
from marketwire.storage.subscribers import subscriber_type_for


def _parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="marketwire", description="Indonesian market news broadcaster")
    sub = p.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one fetch/score/dispatch cycle")
    run.add_argument("--dry-run", action="store_true", help="Keep state in memory and log instead of sending")

    sub.add_parser("health", help="Report the last successful cycle")

    subscribers = sub.add_parser("subscribers", help="Subscriber counts")
    subscribers.add_argument("--export", metavar="PATH", default="", help="Write all subscribers as CSV")

    subscribe = sub.add_parser("subscribe", help="Add or reactivate a chat")
    subscribe.add_argument("chat_id", type=int)

    unsubscribe = sub.add_parser("unsubscribe", help="Mark a chat inactive")
    unsubscribe.add_argument("chat_id", type=int)
    return p.parse_args(argv)


def _print(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def main(argv=None) -> int:
    args = _parse_args(argv)
    settings = load_settings()

    if args.command == "run":
        try:
            report = execute(dry_run=args.dry_run, settings=settings)
        except StorageError as e:
            logger.error(f"❌ Cycle aborted, storage unavailable: {e}")
            return 1
        _print({k: v for k, v in report.items() if k not in ("selected", "rejected")})
        return 0

    store = build_store(settings.store_backend, settings.store_path, settings.redis_url)
    try:
        registry = SubscriberRegistry(store)

        if args.command == "health":
            status = build_ledger(settings, store).get_health_status()
            _print(status)
            return 0 if status["status"] == "healthy" else 1

        if args.command == "subscribers":
            _print(registry.summarize())
            if args.export:
                with open(args.export, "w", encoding="utf-8", newline="") as f:
                    f.write(registry.export_csv())
                logger.info(f"✅ Subscribers exported to {args.export}")
            return 0

        if args.command == "subscribe":
            subscriber = registry.add_subscriber(args.chat_id)
            _print(subscriber.to_dict())
            return 0

        if args.command == "unsubscribe":
            subscriber = registry.update_subscriber_status(subscriber_type_for(args.chat_id), args.chat_id, "inactive")
            if subscriber is None:
                logger.error(f"❌ Unknown chat {args.chat_id}")
                return 1
            _print(subscriber.to_dict())
            return 0
    except StorageError as e:
        logger.error(f"❌ Storage unavailable: {e}")
        return 1
    finally:
        store.close()

    return 2


if __name__ == "__main__":
    sys.exit(main())
