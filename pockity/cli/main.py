"""
CLI interface for Pockity.

Provides command-line access to storage, usage and approval operations.
"""

import sys
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from pockity.config.loader import GIB, PockityConfig, default_config, load_config
from pockity.core.errors import PockityError
from pockity.core.formatting import bytes_to_gb, file_category, format_file_size
from pockity.core.log import configure_logging
from pockity.core.services import Services, build_services
from pockity.core.tenant import parse_tenant
from pockity.storage.models import ApprovalStatus
from pockity.storage.repository import initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1


class _State:
    def __init__(self, config_path: Optional[str], bucket: Optional[str], db_path: str):
        self.config_path = config_path
        self.bucket = bucket
        self.db_path = db_path
        self._config: Optional[PockityConfig] = None
        self._services: Optional[Services] = None

    @property
    def config(self) -> PockityConfig:
        if self._config is None:
            try:
                if self.config_path:
                    self._config = load_config(self.config_path)
                elif self.bucket:
                    self._config = default_config(self.bucket, self.db_path)
                else:
                    raise ValueError("Provide --config or --bucket (or POCKITY_CONFIG/POCKITY_BUCKET)")
            except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
                _fail(e)
            configure_logging(self._config.logging.level)
        return self._config

    @property
    def services(self) -> Services:
        if self._services is None:
            self._services = build_services(self.config)
        return self._services


def _fail(error: Exception) -> None:
    if isinstance(error, PockityError):
        console.print(f"[red]Error ({error.http_status}):[/] {error.message}")
        if error.details:
            console.print(f"[dim]{error.details}[/]")
    else:
        console.print(f"[red]Error:[/] {str(error)}")
    sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None, "--config", "-c", envvar="POCKITY_CONFIG", help="Path to YAML configuration"
    ),
    bucket: Optional[str] = typer.Option(
        None, "--bucket", envvar="POCKITY_BUCKET", help="Bucket to use without a config file"
    ),
    db: str = typer.Option(
        "pockity.db", "--db", envvar="POCKITY_DB", help="Database path without a config file"
    ),
):
    """Pockity storage CLI."""
    ctx.obj = _State(config, bucket, db)
    if ctx.invoked_subcommand is None:
        console.print("Pockity - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the Pockity database."""
    try:
        initialize_schema(ctx.obj.config.database.path)
        console.print("[green]✓[/] Database initialized successfully")
    except PockityError as e:
        _fail(e)
    sys.exit(EXIT_CODE_OK)


@app.command()
def upload(
    ctx: typer.Context,
    tenant: str = typer.Argument(..., help="user:<id> or apikey:<id>"),
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Stored file name"),
    content_type: Optional[str] = typer.Option(None, "--content-type", "-t"),
):
    """Upload a file into a tenant's storage."""
    try:
        result = ctx.obj.services.storage.upload(
            parse_tenant(tenant), name or path.name, path.read_bytes(), content_type
        )
    except PockityError as e:
        _fail(e)
    console.print(f"[green]✓[/] Uploaded {result.file_name} ({format_file_size(result.size)})")
    console.print(f"Key: {result.key}")
    console.print(f"URL: {result.url}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def delete(
    ctx: typer.Context,
    tenant: str = typer.Argument(...),
    name: str = typer.Argument(...),
):
    """Delete a single file."""
    try:
        result = ctx.obj.services.storage.delete(parse_tenant(tenant), name)
    except PockityError as e:
        _fail(e)
    console.print(f"[green]✓[/] Deleted {result.file_name} ({format_file_size(result.size)})")
    sys.exit(EXIT_CODE_OK)


@app.command("bulk-delete")
def bulk_delete(
    ctx: typer.Context,
    tenant: str = typer.Argument(...),
    names: List[str] = typer.Argument(...),
):
    """Delete several files, reporting each outcome."""
    try:
        result = ctx.obj.services.storage.bulk_delete(parse_tenant(tenant), names)
    except PockityError as e:
        _fail(e)

    table = Table("File", "Result", "Size")
    for item in result.results:
        status = "[green]deleted[/]" if item.success else f"[red]{item.error}[/]"
        table.add_row(item.file_name, status, format_file_size(item.size))
    console.print(table)
    console.print(
        f"{result.success_count} deleted, {result.failure_count} failed, "
        f"{format_file_size(result.total_size_deleted)} freed"
    )
    sys.exit(EXIT_CODE_OK if result.failure_count == 0 else EXIT_CODE_FAIL)


@app.command("ls")
def list_files(ctx: typer.Context, tenant: str = typer.Argument(...)):
    """List a tenant's files."""
    try:
        listing = ctx.obj.services.storage.list_files(parse_tenant(tenant))
    except PockityError as e:
        _fail(e)

    table = Table("Key", "Size", "Type", "Category", "Modified")
    for f in listing.files:
        table.add_row(
            f.key,
            format_file_size(f.size_bytes),
            f.content_type or "-",
            file_category(f.key),
            f.last_modified.isoformat(),
        )
    console.print(table)
    console.print(f"{listing.total_files} files, {format_file_size(listing.total_size)}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def usage(ctx: typer.Context, tenant: str = typer.Argument(...)):
    """Show usage against quota."""
    try:
        report = ctx.obj.services.storage.usage(parse_tenant(tenant))
    except PockityError as e:
        _fail(e)

    console.print(f"\n[bold]Storage usage for {tenant}[/bold]")
    console.print("-" * 40)
    console.print(
        f"Bytes: {report.bytes_used} / {report.max_bytes} "
        f"({bytes_to_gb(report.bytes_used)}GB of {bytes_to_gb(report.max_bytes)}GB, "
        f"{report.usage_percentage['bytes']:.1f}%)"
    )
    console.print(
        f"Objects: {report.object_count} / {report.max_objects} "
        f"({report.usage_percentage['objects']:.1f}%)"
    )
    console.print(f"Last updated: {report.last_updated.isoformat()}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def reconcile(ctx: typer.Context, tenant: str = typer.Argument(...)):
    """Reset a tenant's ledger from its stored objects."""
    try:
        result = ctx.obj.services.storage.reconcile(parse_tenant(tenant))
    except PockityError as e:
        _fail(e)

    if result.in_sync:
        console.print("[green]✓[/] Ledger already in sync")
    else:
        console.print(
            f"[yellow]Corrected drift:[/] {result.bytes_drift} bytes, {result.objects_drift} objects"
        )
    console.print(f"Usage: {result.current.bytes_used} bytes, {result.current.object_count} objects")
    sys.exit(EXIT_CODE_OK)


@app.command("request-key")
def request_key(
    ctx: typer.Context,
    user: str = typer.Argument(..., help="Requesting user id"),
    storage_gb: float = typer.Option(..., "--storage-gb", help="Requested storage in GB"),
    objects: int = typer.Option(..., "--objects", help="Requested object count"),
    reason: str = typer.Option(..., "--reason"),
    name: Optional[str] = typer.Option(None, "--name", help="Key name"),
):
    """Request a new API key."""
    try:
        request = ctx.obj.services.approvals.submit_create(
            user, int(storage_gb * GIB), objects, reason, key_name=name
        )
    except PockityError as e:
        _fail(e)
    console.print(f"[green]✓[/] Request {request.id} submitted ({request.status.value})")
    sys.exit(EXIT_CODE_OK)


@app.command("request-upgrade")
def request_upgrade(
    ctx: typer.Context,
    user: str = typer.Argument(...),
    key: str = typer.Argument(..., help="Access key id to upgrade"),
    storage_gb: float = typer.Option(..., "--storage-gb"),
    objects: int = typer.Option(..., "--objects"),
    reason: str = typer.Option(..., "--reason"),
):
    """Request higher limits for an API key."""
    try:
        request = ctx.obj.services.approvals.submit_upgrade(
            user, key, int(storage_gb * GIB), objects, reason
        )
    except PockityError as e:
        _fail(e)
    console.print(f"[green]✓[/] Upgrade request {request.id} submitted ({request.status.value})")
    sys.exit(EXIT_CODE_OK)


@app.command()
def keys(ctx: typer.Context, user: str = typer.Argument(..., help="Key owner's user id")):
    """List a user's API keys."""
    try:
        api_keys = ctx.obj.services.approvals.list_keys(user)
    except PockityError as e:
        _fail(e)

    table = Table("Access key id", "Name", "Active", "Created", "Last used", "Revoked")
    for key in api_keys:
        table.add_row(
            key.access_key_id,
            key.name or "-",
            "yes" if key.is_usable else "no",
            key.created_at.isoformat(timespec="seconds"),
            key.last_used_at.isoformat(timespec="seconds") if key.last_used_at else "-",
            key.revoked_at.isoformat(timespec="seconds") if key.revoked_at else "-",
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command("revoke-key")
def revoke_key(
    ctx: typer.Context,
    user: str = typer.Argument(..., help="Key owner's user id"),
    key: str = typer.Argument(..., help="Access key id to revoke"),
):
    """Permanently revoke an API key."""
    try:
        revoked = ctx.obj.services.approvals.revoke_key(user, key)
    except PockityError as e:
        _fail(e)
    console.print(f"[green]✓[/] Revoked {revoked.access_key_id} at {revoked.revoked_at.isoformat()}")
    sys.exit(EXIT_CODE_OK)


@app.command()
def tenants(ctx: typer.Context):
    """Show recorded usage for every tenant."""
    try:
        records = ctx.obj.services.ledger.overview()
        rows = [(r, ctx.obj.services.quota.resolve_limits(parse_tenant(r.tenant_id))) for r in records]
    except PockityError as e:
        _fail(e)

    table = Table("Tenant", "Used", "Objects", "Max bytes", "Max objects")
    for record, quota in rows:
        table.add_row(
            record.tenant_id,
            format_file_size(record.bytes_used),
            str(record.object_count),
            format_file_size(quota.max_bytes),
            str(quota.max_objects),
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def review(
    ctx: typer.Context,
    request_id: str = typer.Argument(...),
    reviewer: str = typer.Option(..., "--reviewer", help="Admin id"),
    approve: bool = typer.Option(..., "--approve/--reject"),
    comment: Optional[str] = typer.Option(None, "--comment"),
):
    """Approve or reject a pending request."""
    try:
        outcome = ctx.obj.services.approvals.review(request_id, reviewer, approve, comment)
    except PockityError as e:
        _fail(e)

    console.print(f"[green]✓[/] Request {request_id} {outcome.request.status.value}")
    if outcome.credentials:
        console.print(f"Access key id: {outcome.credentials.access_key_id}")
        console.print(f"Secret key: {outcome.credentials.secret_key}")
        console.print("[yellow]The secret is shown only once.[/]")
    sys.exit(EXIT_CODE_OK)


@app.command()
def requests(
    ctx: typer.Context,
    status: Optional[str] = typer.Option(None, "--status", help="PENDING, APPROVED or REJECTED"),
    user: Optional[str] = typer.Option(None, "--user"),
    limit: int = typer.Option(50, "--limit"),
    offset: int = typer.Option(0, "--offset"),
):
    """List API key requests."""
    try:
        status_filter = ApprovalStatus(status.upper()) if status else None
    except ValueError:
        _fail(ValueError(f"Unknown status '{status}'"))
    try:
        rows = ctx.obj.services.approvals.list_requests(status_filter, user, limit, offset)
    except PockityError as e:
        _fail(e)

    table = Table("Id", "Type", "User", "Key", "Storage (GB)", "Objects", "Status")
    for r in rows:
        table.add_row(
            r.id,
            r.request_type.value,
            r.user_id,
            r.access_key_id or "-",
            f"{bytes_to_gb(r.requested_bytes):g}",
            str(r.requested_objects),
            r.status.value,
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


@app.command()
def audit(
    ctx: typer.Context,
    tenant: Optional[str] = typer.Option(None, "--tenant"),
    limit: int = typer.Option(20, "--limit"),
):
    """Show recent audit events."""
    try:
        tenant_id = parse_tenant(tenant).tenant_id if tenant else None
        events = ctx.obj.services.audit.recent(limit=limit, tenant_id=tenant_id)
    except PockityError as e:
        _fail(e)

    table = Table("Time", "Action", "Tenant", "Actor", "Detail")
    for event in events:
        table.add_row(
            event.created_at.isoformat(timespec="seconds"),
            event.action,
            event.tenant_id or "-",
            event.actor_id or "-",
            event.detail or "",
        )
    console.print(table)
    sys.exit(EXIT_CODE_OK)


if __name__ == "__main__":
    app()
