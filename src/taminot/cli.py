"""Command-line entry points for Taminot.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results. Every invocation loads one runtime context,
runs one command, saves the workbook once, and only then delivers queued
Telegram notifications.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import backup, core_logic, log, notifications, reports, workflow
from .constants import ADMIN_ORG_ID, RequestStatus, UserRole


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="taminot-cli",
        description="Command-line tools for the Taminot supply workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the working directory by default).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [
        *register_write_commands(subparsers).values(),
        *register_service_commands(subparsers).values(),
        *register_read_commands(subparsers).values(),
    ]
    return build_command_table(specs)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as requisitions and stock movements."""
    specs = {
        "add-user": register_add_user_command(subparsers),
        "add-product": register_add_product_command(subparsers),
        "request": register_request_command(subparsers),
        "approve": register_approve_command(subparsers),
        "reject": register_reject_command(subparsers),
        "edit-request": register_edit_request_command(subparsers),
        "delete-request": register_delete_request_command(subparsers),
        "consume": register_consume_command(subparsers),
        "intake": register_intake_command(subparsers),
        "set-telegram": register_set_telegram_command(subparsers),
        "set-github": register_set_github_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_service_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare backup, restore, and notification commands."""
    specs = {
        "backup": register_backup_command(subparsers),
        "restore": register_restore_command(subparsers),
        "export": register_export_command(subparsers),
        "import": register_import_command(subparsers),
        "notify-test": register_notify_test_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports."""
    specs = {
        "login": register_login_command(subparsers),
        "stock": register_stock_command(subparsers),
        "requests": register_requests_command(subparsers),
        "stats": register_stats_command(subparsers),
        "log": register_log_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_requisition_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--quantity", type=int, required=True)
    parser.add_argument("--variant", default=None)
    parser.add_argument("--blood-group", default=None)
    parser.add_argument("--patient-name", default=None)
    parser.add_argument("--comment", default=None)


def _add_movement_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--product-id", required=True)
    parser.add_argument("--quantity", type=int, required=True)
    parser.add_argument("--variant", default=None)
    parser.add_argument("--comment", default=None)


def register_add_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-user``."""
    name = "add-user"
    help_text = "Register a new organization account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--name", required=True)
        parser.add_argument("--username", required=True)
        parser.add_argument("--password", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_user)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the catalogue."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-name", required=True)
        parser.add_argument("--unit", required=True)
        parser.add_argument("--variants", default=None, help="Comma separated variant names.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_request_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``request``."""
    name = "request"
    help_text = "Submit a requisition on behalf of an organization."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--org-id", required=True)
        _add_requisition_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_request)


def register_approve_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``approve``."""
    name = "approve"
    help_text = "Approve a pending requisition and deliver its stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--requisition-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_approve)


def register_reject_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``reject``."""
    name = "reject"
    help_text = "Reject a pending requisition."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--requisition-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_reject)


def register_edit_request_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-request``."""
    name = "edit-request"
    help_text = "Overwrite the fields of a requisition."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--requisition-id", required=True)
        _add_requisition_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_request)


def register_delete_request_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-request``."""
    name = "delete-request"
    help_text = "Delete a requisition; stock movements are kept."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--requisition-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_request)


def register_consume_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``consume``."""
    name = "consume"
    help_text = "Record stock used by an organization."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--org-id", required=True)
        _add_movement_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_consume)


def register_intake_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``intake``."""
    name = "intake"
    help_text = "Record stock received by the central warehouse."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_movement_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_intake)


def register_set_telegram_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-telegram``."""
    name = "set-telegram"
    help_text = "Store Telegram bot settings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--bot-token", required=True)
        parser.add_argument("--chat-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_telegram)


def register_set_github_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-github``."""
    name = "set-github"
    help_text = "Store GitHub backup settings."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--token", required=True)
        parser.add_argument("--owner", required=True)
        parser.add_argument("--repo", required=True)
        parser.add_argument("--path", default="taminot-backup.json")
        parser.add_argument("--branch", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_set_github)


def register_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``backup``."""
    name = "backup"
    help_text = "Push a snapshot to the configured GitHub file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_backup)


def register_restore_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restore``."""
    name = "restore"
    help_text = "Replace local data with the GitHub snapshot."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restore)


def register_export_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export``."""
    name = "export"
    help_text = "Write a snapshot to a local JSON file."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export)


def register_import_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Replace local data with a local JSON snapshot."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import)


def register_notify_test_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``notify-test``."""
    name = "notify-test"
    help_text = "Send a Telegram test message."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_notify_test)


def register_login_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``login``."""
    name = "login"
    help_text = "Check credentials and show the account role."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--username", required=True)
        parser.add_argument("--password", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_login)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--org-id", default=ADMIN_ORG_ID, help="Ledger to report (default: central warehouse).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_requests_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``requests``."""
    name = "requests"
    help_text = "List requisitions."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in RequestStatus], default=None)
        parser.add_argument("--org-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_requests_report)


def register_stats_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stats``."""
    name = "stats"
    help_text = "Display approved requisition statistics."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--org-id", default=None)
        parser.add_argument("--patient", default=None, help="Case-insensitive patient name filter.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stats_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the stock transaction log."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--org-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(config_path)
    core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_add_user(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-user request."""
    return {
        "name": args.name,
        "username": args.username,
        "password": args.password,
        "role": UserRole.ORG,
    }


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_name": args.product_name,
        "unit": args.unit,
        "variants": args.variants,
    }


def translate_request(args: argparse.Namespace) -> workflow.RequisitionDraft:
    """Translate CLI args into a requisition draft."""
    return workflow.RequisitionDraft(
        product_id=args.product_id,
        quantity=args.quantity,
        variant=args.variant,
        blood_group=args.blood_group,
        patient_name=args.patient_name,
        comment=args.comment,
    )


def translate_edit_request(args: argparse.Namespace) -> workflow.RequisitionEdit:
    """Translate CLI args into a requisition edit."""
    return workflow.RequisitionEdit(
        requisition_id=args.requisition_id,
        product_id=args.product_id,
        quantity=args.quantity,
        variant=args.variant,
        blood_group=args.blood_group,
        patient_name=args.patient_name,
        comment=args.comment,
    )


def translate_consume(args: argparse.Namespace) -> core_logic.ConsumptionCommand:
    """Translate CLI args into a consumption command."""
    return core_logic.ConsumptionCommand(
        org_id=args.org_id,
        product_id=args.product_id,
        variant=args.variant,
        quantity=args.quantity,
        comment=args.comment,
    )


def translate_intake(args: argparse.Namespace) -> core_logic.CentralIntakeCommand:
    """Translate CLI args into a central intake command."""
    return core_logic.CentralIntakeCommand(
        product_id=args.product_id,
        variant=args.variant,
        quantity=args.quantity,
        comment=args.comment,
    )


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-user workflow."""
    user = core_logic.add_user(context, **translate_add_user(args))
    print(f"Created organization {user.user_id} ({user.name})")
    return 0


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = core_logic.add_product(context, **translate_add_product(args))
    print(f"Created product {product.product_id} ({product.product_name})")
    return 0


def run_request(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Create a requisition and queue the announcement."""
    requisition = workflow.create_requisition(context, translate_request(args), args.org_id)
    notifications.queue_requisition_event(context, requisition, "New requisition")
    print(f"Created requisition {requisition.requisition_id}")
    return 0


def run_approve(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Approve a requisition; its delivery transaction is written in the same save."""
    change = workflow.approve(context, args.requisition_id)
    notifications.queue_requisition_event(context, change.requisition, "Requisition approved")
    print(f"Approved {change.requisition.requisition_id}; delivered via {change.transaction.transaction_id}")
    return 0


def run_reject(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Reject a requisition."""
    change = workflow.reject(context, args.requisition_id)
    notifications.queue_requisition_event(context, change.requisition, "Requisition rejected")
    print(f"Rejected {change.requisition.requisition_id}")
    return 0


def run_edit_request(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Overwrite requisition fields."""
    requisition = workflow.edit_requisition(context, translate_edit_request(args))
    notifications.queue_requisition_event(context, requisition, "Requisition edited")
    print(f"Updated requisition {requisition.requisition_id}")
    return 0


def run_delete_request(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Delete a requisition."""
    workflow.delete_requisition(context, args.requisition_id)
    print(f"Deleted requisition {args.requisition_id}")
    return 0


def run_consume(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record organization consumption."""
    transaction = core_logic.record_consumption(context, translate_consume(args))
    print(f"Recorded consumption {transaction.transaction_id}")
    return 0


def run_intake(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Record central warehouse intake."""
    transaction = core_logic.record_central_intake(context, translate_intake(args))
    print(f"Recorded intake {transaction.transaction_id}")
    return 0


def run_set_telegram(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Store Telegram settings."""
    core_logic.save_telegram_config(
        context, core_logic.TelegramConfig(bot_token=args.bot_token, chat_id=args.chat_id))
    return 0


def run_set_github(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Store GitHub backup settings."""
    core_logic.save_github_config(
        context,
        core_logic.GithubConfig(
            token=args.token,
            owner=args.owner,
            repo=args.repo,
            path=args.path,
            branch=args.branch,
        ),
    )
    return 0


def run_backup(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Push a snapshot to GitHub."""
    snapshot = backup.backup_to_github(context)
    print(f"Backup pushed ({snapshot['exportedAt']})")
    return 0


def run_restore(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Restore from the GitHub snapshot."""
    snapshot = backup.restore_from_github(context)
    print(f"Restored snapshot exported at {snapshot.get('exportedAt', 'unknown time')}")
    return 0


def run_export(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write a local snapshot file."""
    path = backup.write_snapshot_file(context, args.file)
    print(f"Snapshot written to {path}")
    return 0


def run_import(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Restore from a local snapshot file."""
    backup.read_snapshot_file(context, args.file)
    print(f"Snapshot imported from {args.file}")
    return 0


def run_notify_test(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Send the Telegram connection check."""
    result = notifications.send_test_message(context)
    if not result.success:
        raise core_logic.ServiceUnavailable(result.error)
    print("Test message delivered")
    return 0


def run_login(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Verify credentials."""
    user = core_logic.authenticate(context, args.username, args.password)
    print(f"{user.name} ({user.role}, id {user.user_id})")
    return 0


def run_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the balances of one ledger."""
    for line in reports.stock_report(context, args.org_id):
        print(f"{line.product_name}\t{line.variant}\t{line.balance}\t{line.unit}")
    return 0


def run_requests_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print requisitions, optionally filtered."""
    status = RequestStatus(args.status) if args.status else None
    for row in core_logic.list_requisitions(context, status=status, org_id=args.org_id):
        print(
            f"{row.requisition_id}\t{row.status}\t{row.org_name}\t"
            f"{reports.product_label(row)}\t{row.quantity} {row.unit}\t{row.date_iso}"
        )
    return 0


def run_stats_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print approved requisition statistics."""
    summary = reports.summarize_requisitions(context, org_id=args.org_id, patient_filter=args.patient)
    for status, count in summary.count_by_status.items():
        print(f"{status}\t{count}")
    for label, quantity in summary.approved_quantity_by_product.items():
        print(f"{label}\t{quantity}")
    for org_name, count in summary.approved_count_by_org.items():
        print(f"{org_name}\t{count}")
    return 0


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the stock log."""
    for row in core_logic.list_transactions(context, org_id=args.org_id):
        print(
            f"{row.transaction_id}\t{row.timestamp_iso}\t{row.org_id}\t{row.movement_type}\t"
            f"{row.product_id}\t{row.variant or '-'}\t{row.quantity}\t{row.comment or ''}"
        )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    log.error("%s", error)
    if isinstance(error, core_logic.BusinessRuleViolation):
        return 2
    if isinstance(error, FileNotFoundError):
        return 3
    if isinstance(error, core_logic.ServiceUnavailable):
        return 4
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def deliver_notifications(context: core_logic.RuntimeContext) -> None:
    """Flush the outbox; delivery problems are logged, never fatal."""
    for result in notifications.flush_outbox(context):
        if not result.success:
            print(f"Warning: {result.error}", file=sys.stderr)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
            deliver_notifications(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
