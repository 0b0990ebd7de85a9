"""
Keyward CLI — operator entry point.

Usage:
    keyward init                                  # Generate the master key
    keyward keys create --name web --client acme  # Issue a key (printed once)
    keyward keys list --client acme               # List a client's keys
    keyward keys revoke <id>                      # Revoke a key
    keyward keys refresh <id> [--expires-in N]    # Rotate a key
    keyward events stats                          # Security event counters
    keyward version                               # Show version
"""

from __future__ import annotations

import argparse
import json
import logging
import sys


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="keyward",
        description="Keyward — API key, permission and security-event management.",
    )
    parser.add_argument("--version", action="store_true", help="Show version and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command")

    # init
    init_parser = subparsers.add_parser("init", help="Generate the master encryption key")
    init_parser.add_argument("--data-dir", type=str, help="Override KEYWARD_DATA_DIR")

    # keys
    keys_parser = subparsers.add_parser("keys", help="Manage API keys")
    keys_sub = keys_parser.add_subparsers(dest="keys_command")

    create_parser = keys_sub.add_parser("create", help="Issue a new API key")
    create_parser.add_argument("--name", required=True, help="Human-readable label")
    create_parser.add_argument("--client", required=True, help="Owning client id")
    create_parser.add_argument("--domain", default="*", help="Comma-separated domain allow-list")
    create_parser.add_argument(
        "--level", choices=["read", "standard", "admin"], default="read", help="Permission level"
    )
    create_parser.add_argument("--expires-in", type=int, help="Lifetime in seconds")

    list_parser = keys_sub.add_parser("list", help="List API keys")
    list_parser.add_argument("--client", help="Only keys owned by this client")
    list_parser.add_argument("--json", action="store_true", help="Machine-readable output")

    revoke_parser = keys_sub.add_parser("revoke", help="Revoke an API key")
    revoke_parser.add_argument("key_id")

    refresh_parser = keys_sub.add_parser("refresh", help="Revoke and reissue an API key")
    refresh_parser.add_argument("key_id")
    refresh_parser.add_argument("--expires-in", type=int, help="Lifetime in seconds")

    # events
    events_parser = subparsers.add_parser("events", help="Security events")
    events_sub = events_parser.add_subparsers(dest="events_command")
    events_sub.add_parser("stats", help="Aggregate event counters")

    # version
    subparsers.add_parser("version", help="Show version")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.version or args.command == "version":
        from keyward import __version__

        print(f"keyward {__version__}")
        return 0

    if args.command == "init":
        return _cmd_init(args)
    elif args.command == "keys":
        return _cmd_keys(args, keys_parser)
    elif args.command == "events":
        return _cmd_events(args, events_parser)
    else:
        parser.print_help()
        return 0


def _cmd_init(args: argparse.Namespace) -> int:
    from keyward.config import get_config
    from keyward.crypto import init_master_key

    data_dir = args.data_dir or get_config().storage.path
    path = init_master_key(data_dir)
    print(f"Master key: {path}")
    return 0


def _services():
    from keyward.app import build_services

    services = build_services()
    services.initialize()
    return services


def _cmd_keys(args: argparse.Namespace, keys_parser: argparse.ArgumentParser) -> int:
    if not args.keys_command:
        keys_parser.print_help()
        return 0

    services = _services()
    try:
        creds = services.credentials
        if args.keys_command == "create":
            from pydantic import ValidationError

            request = {
                "name": args.name,
                "client_id": args.client,
                "domain": args.domain,
                "permission_level": args.level,
            }
            if args.expires_in:
                request["expires_in"] = args.expires_in
            try:
                created = creds.create(request)
            except ValidationError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            print(f"ID:      {created.info.id}")
            print(f"Key:     {created.raw_key}")
            print(f"Expires: {created.info.expires_at.isoformat()}")
            print("Store the key now; it cannot be shown again.")
            return 0

        if args.keys_command == "list":
            infos = creds.list_by_client(args.client) if args.client else creds.list_all()
            if args.json:
                print(json.dumps([i.to_dict() for i in infos], indent=2))
                return 0
            if not infos:
                print("No keys.")
                return 0
            for info in infos:
                expires = info.expires_at.isoformat() if info.expires_at else "never"
                print(
                    f"{info.id}  {info.status:<8} {info.permission_level:<9} "
                    f"{info.client_id}  {info.name}  (expires {expires})"
                )
            return 0

        if args.keys_command == "revoke":
            if not creds.revoke(args.key_id):
                print(f"Error: no key {args.key_id}", file=sys.stderr)
                return 1
            print(f"Revoked {args.key_id}")
            return 0

        if args.keys_command == "refresh":
            created = creds.refresh(args.key_id, args.expires_in)
            if created is None:
                print(f"Error: {args.key_id} is unknown or not active", file=sys.stderr)
                return 1
            print(f"Revoked: {args.key_id}")
            print(f"ID:      {created.info.id}")
            print(f"Key:     {created.raw_key}")
            return 0
    finally:
        services.shutdown()
    return 1


def _cmd_events(args: argparse.Namespace, events_parser: argparse.ArgumentParser) -> int:
    if args.events_command != "stats":
        events_parser.print_help()
        return 0

    services = _services()
    try:
        stats = services.monitor.get_stats()
        print(json.dumps(stats.to_dict(), indent=2, sort_keys=True))
        return 0
    finally:
        services.shutdown()


if __name__ == "__main__":
    sys.exit(main())
