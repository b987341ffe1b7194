"""Command-line interface for the mail attachment filer."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from mailfiler import (
    BatchRunController,
    Config,
    ConfigurationError,
    RunResult,
    UserRegistry,
)
from mailfiler.backends import (
    build_mailbox,
    build_property_store,
    build_storage,
    user_mailbox_factory,
)
from mailfiler.keycheck import check_api_keys


def print_summary(result: RunResult) -> None:
    """Print summary statistics.

    Args:
        result: Outcome of the run
    """
    print("\n" + "=" * 80)
    print("SUMMARY")
    print("=" * 80)
    print(f"Status: {result.status.value}" + (f" ({result.message})" if result.message else ""))
    if result.users_processed:
        print(f"Users processed: {result.users_processed}")
    print(f"Threads scanned: {result.threads_scanned}")
    print(f"Threads processed: {result.threads_processed}")
    print(f"Threads with saved attachments: {result.threads_with_saved_attachments}")
    print(f"Attachments seen: {result.attachments_seen}")
    print(f"  Saved: {result.attachments_saved}")
    print(f"  Skipped: {result.attachments_skipped}")
    print(f"  Duplicates: {result.attachments_duplicate}")
    print(f"  Invoice copies: {result.invoice_copies_saved}")

    print(f"\nPerformance:")
    print(f"  Total: {result.duration_sec:.2f}s "
          f"(classify: {result.classification_time_sec:.3f}s, "
          f"folders: {result.folder_time_sec:.3f}s, "
          f"invoice: {result.invoice_detection_time_sec:.3f}s, "
          f"upload: {result.upload_time_sec:.3f}s)")

    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for error in result.errors:
            print(f"  - {error}")


def run_command(config: Config, all_users: bool, output: Optional[Path]) -> int:
    property_store = build_property_store(config)
    storage = build_storage(config)

    if all_users:
        registry = UserRegistry(property_store)
        controller = BatchRunController(config, None, storage, property_store)
        result = controller.run_for_users(registry, user_mailbox_factory(config, registry))
    else:
        mailbox = build_mailbox(config)
        try:
            controller = BatchRunController(config, mailbox, storage, property_store)
            result = controller.run()
        finally:
            mailbox.close()

    print_summary(result)

    if output:
        with open(output, "w") as f:
            json.dump(result.model_dump(mode="json"), f, indent=2)
        print(f"\nResult saved to: {output}")

    return 0 if result.success else 1


def users_command(
    config: Config,
    action: str,
    email: Optional[str],
    refresh_token: Optional[str] = None,
) -> int:
    registry = UserRegistry(build_property_store(config))

    if action == "list":
        users = registry.list()
        print(f"{len(users)} registered user(s)")
        for user in users:
            print(f"  - {user}")
        return 0

    if not email:
        print(f"users {action} needs an email address")
        return 2

    try:
        if action == "add":
            changed = registry.add(email, refresh_token)
            print(f"Added {email}" if changed else f"{email} is already registered")
            if refresh_token:
                print("Stored refresh token")
        else:
            changed = registry.remove(email)
            print(f"Removed {email}" if changed else f"{email} is not registered")
    except ValueError as e:
        print(f"Error: {e}")
        return 2
    return 0


def check_keys_command(config: Config, list_models: bool = False) -> int:
    results = check_api_keys(config, build_property_store(config), list_models=list_models)

    print("\n" + "=" * 80)
    print("API KEYS")
    print("=" * 80)
    for result in results:
        if not result.found:
            status = "not found"
        elif result.valid:
            status = f"valid ({result.masked_key})"
        else:
            status = f"INVALID ({result.masked_key}): {result.detail}"
        print(f"{result.provider}: {status}")
        for model in result.models:
            print(f"  - {model}")

    found = [r for r in results if r.found]
    return 0 if found and all(r.valid for r in found) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mailfiler",
        description="File mail attachments into per-sender-domain folders.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subcommands = parser.add_subparsers(dest="command", required=True)

    run = subcommands.add_parser("run", help="Process unprocessed threads once")
    run.add_argument("--all-users", action="store_true", help="Process every registered user")
    run.add_argument("--output", type=Path, help="Write the run result as JSON")

    users = subcommands.add_parser("users", help="Manage registered users")
    users.add_argument("action", choices=["add", "remove", "list"])
    users.add_argument("email", nargs="?")
    users.add_argument("--refresh-token", help="OAuth2 refresh token for this user (add only)")

    keys = subcommands.add_parser("check-keys", help="Verify the Gemini and OpenAI API keys")
    keys.add_argument("--list-models", action="store_true", help="Also list available Gemini models")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2

    if args.command == "users":
        return users_command(config, args.action, args.email, args.refresh_token)
    if args.command == "check-keys":
        return check_keys_command(config, args.list_models)

    print("=" * 80)
    print("Mail Attachment Filer")
    print("=" * 80)
    try:
        return run_command(config, args.all_users, args.output)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
