"""
Operator CLI for the LHDN integration.

Usage:
    python3 scripts/einvoice_cli.py <command> [options]
    einvoice <command> [options]            (installed console script)

Commands:
    init-db                         Create the database tables.
    seed-config <yaml>              Store a YAML settings file as the active LHDN config.
    token [--refresh]               Show which tier holds the token; acquire on a miss.
    check-credentials               Test the active credentials without caching a token.
    submit <json> --invoice-number  Submit one UBL JSON document.
    poll [--batch-size N]           Run one status polling pass.
    status <record-id>              Show one submission record.
    cancel <document-uuid> --reason Cancel a submitted document.

Environment:
    EINVOICE_DATABASE_URL, EINVOICE_TOKEN_FILE, EINVOICE_LOG_LEVEL
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from einvoice_config.loader import load_yaml_file, seed_integration_settings
from einvoice_config.runtime import RuntimeSettings
from einvoice_kernel.db.engine import create_tables, session_scope
from einvoice_kernel.domain.submission import SubmissionDocument
from einvoice_kernel.exceptions import EInvoiceError
from einvoice_kernel.logging_config import LogContext
from einvoice_services.integration import LhdnIntegration


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="einvoice",
        description="LHDN MyInvois token and submission operator tool.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--db-url", default=None, help="Database URL (default: $EINVOICE_DATABASE_URL).")
    parser.add_argument("--token-file", type=Path, default=None, help="Token INI file (default: $EINVOICE_TOKEN_FILE).")
    parser.add_argument("--log-level", default=None, help="Log level (default: $EINVOICE_LOG_LEVEL or INFO).")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables.")

    seed = sub.add_parser("seed-config", help="Store YAML settings as the active LHDN config.")
    seed.add_argument("path", type=Path)

    token = sub.add_parser("token", help="Show token status, acquiring if needed.")
    token.add_argument("--refresh", action="store_true", help="Invalidate the cache first.")

    sub.add_parser("check-credentials", help="Validate the active credentials.")

    submit = sub.add_parser("submit", help="Submit one UBL JSON document.")
    submit.add_argument("path", type=Path)
    submit.add_argument("--invoice-number", required=True)
    submit.add_argument("--file-reference", default=None)

    poll = sub.add_parser("poll", help="Run one status polling pass.")
    poll.add_argument("--batch-size", type=int, default=100)

    status = sub.add_parser("status", help="Show a submission record.")
    status.add_argument("record_id")

    cancel = sub.add_parser("cancel", help="Cancel a submitted document.")
    cancel.add_argument("document_uuid")
    cancel.add_argument("--reason", required=True)

    return parser


def _runtime(args: argparse.Namespace) -> RuntimeSettings:
    env = RuntimeSettings.from_env()
    overrides = {}
    if args.db_url:
        overrides["database_url"] = args.db_url
    if args.token_file:
        overrides["token_file"] = args.token_file
    if args.log_level:
        overrides["log_level"] = RuntimeSettings.from_env(
            {"EINVOICE_LOG_LEVEL": args.log_level}
        ).log_level
    return RuntimeSettings(**{**env.__dict__, **overrides})


def _print_record(record) -> None:
    print(f"  record_id:      {record.id}")
    print(f"  invoice_number: {record.invoice_number}")
    print(f"  status:         {record.status_str}")
    print(f"  attempts:       {record.attempt_count}")
    print(f"  submission_uid: {record.submission_uid or '-'}")
    print(f"  document_uuid:  {record.document_uuid or '-'}")
    if record.long_id:
        print(f"  long_id:        {record.long_id}")
    if record.error_detail:
        print(f"  error:          {json.dumps(record.error_detail, default=str)}")


def _run(args: argparse.Namespace, integration: LhdnIntegration) -> int:
    if args.command == "init-db":
        create_tables()
        print("Tables created.")
        return 0

    if args.command == "seed-config":
        settings = load_yaml_file(args.path)
        with session_scope() as session:
            row = seed_integration_settings(session, settings)
            print(f"Active LHDN config: {row.id}")
        return 0

    if args.command == "token":
        if args.refresh:
            integration.token_store.invalidate()
        lookup = integration.token_status()
        if lookup.token is None:
            integration.get_token()
            lookup = integration.token_status()
            source = "acquired"
        else:
            source = lookup.source.value
        print(f"  source:     {source}")
        print(f"  expires_at: {lookup.token.expires_at.isoformat()}")
        print(f"  usable_til: {lookup.token.safe_expires_at.isoformat()}")
        return 0

    if args.command == "check-credentials":
        check = integration.check_credentials()
        if check.success:
            print(f"Credentials OK (token_type={check.token_type}, expires_in={check.expires_in})")
            return 0
        print(f"Credentials rejected: {check.error}", file=sys.stderr)
        return 1

    if args.command == "submit":
        document = SubmissionDocument.from_json(
            args.invoice_number,
            args.path.read_text(encoding="utf-8"),
            file_reference=args.file_reference or args.path.name,
        )
        # Warm the token cache before the submission transaction holds a write lock.
        integration.get_token()
        with session_scope() as session:
            try:
                result = integration.submission_client(session).submit(document)
            except EInvoiceError:
                # Keep the PENDING record and its failure detail.
                session.commit()
                raise
        print(f"  record_id:      {result.record_id}")
        print(f"  status:         {result.status}")
        print(f"  attempts:       {result.attempts}")
        print(f"  submission_uid: {result.submission_uid or '-'}")
        print(f"  document_uuid:  {result.document_uuid or '-'}")
        if result.error:
            print(f"  error:          {json.dumps(result.error, default=str)}")
        return 0 if result.accepted else 2

    if args.command == "poll":
        with session_scope() as session:
            summary = integration.status_poller(session, batch_size=args.batch_size).poll_once()
        print(
            f"Polled {summary.polled}, updated {summary.updated}, "
            f"unchanged {summary.unchanged}, errors {summary.errors}"
        )
        return 0

    if args.command == "status":
        with session_scope() as session:
            _print_record(integration.tracker(session).get(args.record_id))
        return 0

    if args.command == "cancel":
        with session_scope() as session:
            integration.submission_client(session).cancel_document(
                args.document_uuid, args.reason
            )
        print(f"Cancelled {args.document_uuid}")
        return 0

    raise AssertionError(f"unhandled command {args.command!r}")


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    try:
        runtime = _runtime(args)
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1

    with LhdnIntegration.from_runtime(runtime) as integration, LogContext.operation():
        try:
            return _run(args, integration)
        except EInvoiceError as exc:
            print(f"ERROR [{exc.code}]: {exc}", file=sys.stderr)
            return 1


if __name__ == "__main__":
    sys.exit(main())
