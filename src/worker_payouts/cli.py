"""Worker payouts command line interface.

Provides operational tools for:
- Batch processing of pending payments
- Processing a single payment
- Reconciling payments stuck in PROCESSING
- Worker balance queries and earnings holds
- Schema creation

Usage:
    python -m worker_payouts.cli process-pending
    python -m worker_payouts.cli process --payment-id X
    python -m worker_payouts.cli reconcile --older-than-minutes 30
    python -m worker_payouts.cli balance --worker-id X
    python -m worker_payouts.cli hold --worker-id X --amount 250 --reason "Dispute"
    python -m worker_payouts.cli release --worker-id X --amount 250 --reason "Resolved"
    python -m worker_payouts.cli init-db
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, Callable
from uuid import UUID

from worker_payouts.config import configure_logging
from worker_payouts.container import Services, build_services_from_settings
from worker_payouts.database import init_db
from worker_payouts.errors import PayoutError
from worker_payouts.services import EarningsBalance, EarningsLedger


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


def parse_amount(s: str) -> Decimal:
    """Parse a positive money amount."""
    try:
        amount = Decimal(s)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount: {s!r}") from None
    if amount <= 0:
        raise argparse.ArgumentTypeError("amount must be positive")
    return amount


def parse_minutes(s: str) -> int:
    """Parse a threshold of at least one minute."""
    try:
        minutes = int(s)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid minutes: {s!r}") from None
    if minutes < 1:
        raise argparse.ArgumentTypeError("must be at least 1 minute")
    return minutes


def _default_services() -> Services:
    return build_services_from_settings(queue_mode="none")


class PayoutCli:
    """Worker payouts command line interface."""

    def __init__(self, services_factory: Callable[[], Services] = _default_services) -> None:
        self.services_factory = services_factory
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        common = argparse.ArgumentParser(add_help=False)
        common.add_argument(
            "--json",
            action="store_true",
            help="Print machine-readable JSON",
        )

        parser = argparse.ArgumentParser(
            prog="python -m worker_payouts.cli",
            description="Worker payout operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        subparsers.add_parser(
            "process-pending",
            parents=[common],
            help="Process every PENDING payment",
        )

        process = subparsers.add_parser(
            "process",
            parents=[common],
            help="Process one payment",
        )
        process.add_argument(
            "--payment-id",
            type=parse_uuid,
            required=True,
            help="Worker payment ID",
        )

        reconcile = subparsers.add_parser(
            "reconcile",
            parents=[common],
            help="Resolve payments stuck in PROCESSING",
        )
        reconcile.add_argument(
            "--older-than-minutes",
            type=parse_minutes,
            help="Age threshold (default: RECONCILE_AFTER_MINUTES)",
        )

        balance = subparsers.add_parser(
            "balance",
            parents=[common],
            help="Show a worker's earnings balances",
        )
        balance.add_argument(
            "--worker-id",
            type=parse_uuid,
            required=True,
            help="Worker ID",
        )

        for name, help_text in (
            ("hold", "Move available earnings to pending"),
            ("release", "Return held earnings to available"),
        ):
            adjust = subparsers.add_parser(name, parents=[common], help=help_text)
            adjust.add_argument(
                "--worker-id",
                type=parse_uuid,
                required=True,
                help="Worker ID",
            )
            adjust.add_argument(
                "--amount",
                type=parse_amount,
                required=True,
                help="Amount in payout currency",
            )
            adjust.add_argument(
                "--reason",
                required=True,
                help="Recorded as the ledger description",
            )

        subparsers.add_parser(
            "init-db",
            parents=[common],
            help="Create database tables",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        if parsed.command == "init-db":
            return self._cmd_init_db(parsed)

        # Dispatch to command handler
        handlers: dict[str, Callable[[argparse.Namespace, Services], int]] = {
            "process-pending": self._cmd_process_pending,
            "process": self._cmd_process,
            "reconcile": self._cmd_reconcile,
            "balance": self._cmd_balance,
            "hold": self._cmd_hold,
            "release": self._cmd_release,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        services = self.services_factory()
        try:
            return handler(parsed, services)
        except PayoutError as e:
            if parsed.json:
                self._print_json({"success": False, "message": e.message, "code": e.code})
            else:
                print(f"ERROR [{e.code}]: {e.message}", file=sys.stderr)
            return 1
        finally:
            services.close()

    def _print_json(self, data: dict[str, Any]) -> None:
        print(json.dumps(data, indent=2, default=str))

    def _print_balance(self, worker_id: UUID, balance: EarningsBalance, as_json: bool) -> None:
        if as_json:
            self._print_json({"worker_id": worker_id, **balance.to_dict()})
            return
        print(f"Balance for worker: {worker_id}")
        print(f"\n  Total earned: {balance.total_earnings:>15,.2f}")
        print(f"  Available:    {balance.available_balance:>15,.2f}")
        print(f"  Pending:      {balance.pending_balance:>15,.2f}")
        print(f"  Withdrawn:    {balance.total_withdrawn:>15,.2f}")
        if balance.last_payout_date:
            print(f"  Last payout:  {balance.last_payout_date.isoformat()}")

    def _cmd_process_pending(self, args: argparse.Namespace, services: Services) -> int:
        """Process all pending payments."""
        result = services.orchestrator.process_pending_payments(actor_type="cli")

        if args.json:
            self._print_json(
                {
                    "processed": result.processed,
                    "successful": result.successful,
                    "failed": result.failed,
                    "errors": result.errors,
                }
            )
        else:
            print("Pending payment run")
            print("=" * 40)
            print(f"  Processed:  {result.processed}")
            print(f"  Successful: {result.successful}")
            print(f"  Failed:     {result.failed}")
            for error in result.errors:
                print(f"    - {error['payment_id']}: {error['error']}")

        return 0 if result.failed == 0 else 1

    def _cmd_process(self, args: argparse.Namespace, services: Services) -> int:
        """Process one payment."""
        result = services.orchestrator.process_payment(args.payment_id, actor_type="cli")

        if args.json:
            self._print_json(
                {
                    "payment_id": result.payment_id,
                    "status": result.status,
                    "worker_amount": result.worker_amount,
                    "provider_payout_id": result.provider_payout_id,
                    "transaction_id": result.transaction_id,
                    "failure_reason": result.failure_reason,
                }
            )
        else:
            print(f"Payment {result.payment_id}: {result.status}")
            print(f"  Amount: {result.worker_amount:,.2f}")
            if result.provider_payout_id:
                print(f"  Payout: {result.provider_payout_id}")
            if result.failure_reason:
                print(f"  Reason: {result.failure_reason}")

        return 0 if result.succeeded else 1

    def _cmd_reconcile(self, args: argparse.Namespace, services: Services) -> int:
        """Reconcile stuck payments."""
        result = services.reconciliation.reconcile_stuck_payments(args.older_than_minutes)

        if args.json:
            self._print_json(
                {
                    "checked": result.checked,
                    "paid": result.paid,
                    "failed": result.failed,
                    "still_processing": result.still_processing,
                    "errors": result.errors,
                }
            )
        else:
            print("Stuck payment reconciliation")
            print("=" * 40)
            print(f"  Checked:          {result.checked}")
            print(f"  Resolved paid:    {result.paid}")
            print(f"  Resolved failed:  {result.failed}")
            print(f"  Still processing: {result.still_processing}")
            for error in result.errors:
                print(f"    - {error['payment_id']}: {error['message']}")

        return 0 if result.success else 1

    def _cmd_balance(self, args: argparse.Namespace, services: Services) -> int:
        """Query a worker's balances."""
        with services.session_factory() as db:
            earnings = EarningsLedger(db).get(args.worker_id)
            balance = EarningsBalance.of(earnings) if earnings else EarningsBalance.empty()

        self._print_balance(args.worker_id, balance, args.json)
        return 0

    def _cmd_hold(self, args: argparse.Namespace, services: Services) -> int:
        """Hold part of a worker's available balance."""
        balance = services.orchestrator.hold_earnings(
            args.worker_id, args.amount, args.reason, actor_type="cli"
        )
        self._print_balance(args.worker_id, balance, args.json)
        return 0

    def _cmd_release(self, args: argparse.Namespace, services: Services) -> int:
        """Release held earnings."""
        balance = services.orchestrator.release_earnings(
            args.worker_id, args.amount, args.reason, actor_type="cli"
        )
        self._print_balance(args.worker_id, balance, args.json)
        return 0

    def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create tables."""
        engine, _ = init_db(create_tables=True)
        if args.json:
            self._print_json({"success": True, "database": engine.url.render_as_string()})
        else:
            print(f"Tables created on {engine.url.render_as_string()}")
        return 0


def main() -> None:
    """Main entry point."""
    configure_logging()
    cli = PayoutCli()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
