import json
from pathlib import Path
from typing import Optional, List

import typer
import yaml
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn

from .core import adapters, banks, config, export, ingest, pipeline, storage, telemetry, wizard
from .core.conversation import ConversationDriver, ConversationMachine
from .core.extract import Extractor
from .core.logs import configure_logging
from .core.models import Attachment, FieldKey, InboundMessage, ManifestEntry
from .core.repository import JsonSessionStore, LocalFileStorage, LocalRepository
from .core.i18n import t

app = typer.Typer(help="Orlap: turn field-staff documents and chats into bank product records.")
console = Console()


@app.callback()
def main(
    lang: str = typer.Option(None, "--lang", help="Language (id|en)"),
    log_level: str = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    """Global configuration."""
    configure_logging(log_level or config.settings.LOG_LEVEL)
    if lang:
        config.settings.set_cli_language(lang)


def _open_workspace(path: Optional[Path]) -> storage.Workspace:
    ws = storage.get_workspace(path)
    if not ws.is_valid():
        console.print(f"[yellow]{t('cli.adhoc_init', root=str(ws.root))}[/yellow]")
        ws.ensure_structure(system_only=True)
    config.settings.load_user_config(ws.config_path)
    return ws


def _log_manifest(ws, event, f_hash, src, status, details=None):
    entry = ManifestEntry(event=event, hash=f_hash, src=src, status=status, details=details)
    with open(ws.manifest_path, "a") as f:
        f.write(entry.model_dump_json() + "\n")


def _collect_files(ws: storage.Workspace, files: Optional[List[Path]]) -> List[Path]:
    if not files:
        target = ws.inbox if ws.inbox.exists() else ws.root
        return list(ingest.scan_inbox(target))
    found = []
    for item in files:
        if item.is_dir():
            found.extend(ingest.scan_inbox(item))
        else:
            found.append(item)
    return found


@app.command()
def init(path: Path = typer.Argument(Path("."), help="Where to create the workspace")):
    """Initialize a new workspace."""
    ws = storage.Workspace(path)
    ws.ensure_structure()
    console.print(f"[green]{t('cli.init.success', path=ws.root)}[/green]")

    if typer.confirm(t("cli.init.prompt_setup"), default=False):
        wizard.run_setup_wizard(ws)


@app.command()
def setup(path: Path = typer.Option(None, help="Workspace path")):
    """Run the interactive configuration wizard."""
    ws = _open_workspace(path)
    wizard.run_setup_wizard(ws)


@app.command()
def doctor():
    """Check environment and dependencies."""
    console.print(Panel(t("cli.doctor.title"), style="bold blue"))

    for module, label in (("pdfplumber", "PDF"), ("docx", "Word"), ("openpyxl", "Excel .xlsx"),
                          ("xlrd", "Excel .xls"), ("PIL", "Pillow")):
        try:
            __import__(module)
            console.print(t("cli.doctor.module_ok", name=label))
        except ImportError:
            console.print(t("cli.doctor.module_missing", name=label, module=module))

    console.print(t("cli.doctor.banks", count=len(banks.all_schemas())))
    console.print(t("cli.doctor.default_bank", bank=config.settings.default_bank))
    console.print(t("cli.doctor.max_size", mb=config.settings.max_file_bytes // (1024 * 1024)))


@app.command()
def status(path: Path = typer.Option(None, help="Workspace path")):
    """Show workspace status and aggregate metrics."""
    ws = storage.get_workspace(path)
    if not ws.is_valid():
        console.print(t("cli.status.invalid"))
        raise typer.Exit(1)
    config.settings.load_user_config(ws.config_path)

    totals = {"runs": 0, "total_files": 0, "records": 0, "valid": 0, "saved": 0}
    if ws.runs.exists():
        for run_file in ws.runs.glob("*.json"):
            try:
                with open(run_file) as f:
                    data = json.load(f)
            except (OSError, ValueError):
                continue
            totals["runs"] += 1
            for key in ("total_files", "records", "valid", "saved"):
                totals[key] += data.get(key, 0)

    repo = LocalRepository(ws.db_path)

    table = Table(title=t("cli.status.title"))
    table.add_column(t("cli.status.col_metric"), style="cyan")
    table.add_column(t("cli.status.col_value"), style="magenta")
    table.add_row(t("cli.status.total_runs"), str(totals["runs"]))
    table.add_row(t("cli.status.files_processed"), str(totals["total_files"]))
    table.add_row(t("cli.status.records"), f"{totals['valid']}/{totals['records']}")
    table.add_row(t("cli.status.saved"), str(totals["saved"]))
    table.add_row(t("cli.status.products"), str(len(repo.products)))
    table.add_row(t("cli.status.reference"),
                  f"{len(repo.customers)} / {len(repo.orders)} / {len(repo.field_staff)}")
    console.print(table)


@app.command("banks")
def list_banks(bank: str = typer.Argument(None, help="Bank name or code to show in detail")):
    """List supported banks and their mandatory fields."""
    if bank:
        schema = banks.resolve(bank)
        table = Table(title=f"{schema.display_name} ({schema.code})")
        table.add_column(t("cli.banks.col_field"), style="cyan")
        table.add_column(t("cli.banks.col_label"))
        table.add_column(t("cli.banks.col_required"))
        for key in sorted(schema.mandatory_fields | schema.optional_fields, key=lambda k: k.value):
            required = "✓" if key in schema.mandatory_fields else ""
            table.add_row(key.value, banks.display_label(key, schema), required)
        console.print(table)
        for name, sub in schema.subtypes.items():
            fields = ", ".join(sorted(k.value for k in sub.mandatory))
            console.print(f"[bold]{name}[/bold]: {fields}")
        return

    table = Table(title=t("cli.banks.title"))
    table.add_column(t("cli.banks.col_code"), style="cyan")
    table.add_column(t("cli.banks.col_name"))
    table.add_column(t("cli.banks.col_mandatory"))
    for schema in banks.all_schemas():
        table.add_row(schema.code, schema.display_name,
                      ", ".join(sorted(k.value for k in schema.mandatory_fields)))
    console.print(table)


@app.command()
def extract(
    files: List[Path] = typer.Argument(..., help="Documents to read"),
    as_json: bool = typer.Option(False, "--json", help="Print records as JSON"),
):
    """Extract records from documents without validating or saving them."""
    config.settings.load_user_config(storage.get_workspace(None).config_path)
    pipe = pipeline.BatchPipeline(LocalRepository(None), extractor=Extractor.from_settings(),
                                  default_bank=config.settings.default_bank)
    out = []
    for file_path in files:
        try:
            fmt = ingest.check_file(file_path)
        except (ingest.IngestError, OSError) as e:
            console.print(f"[red]{file_path.name}: {e}[/red]")
            continue
        doc = adapters.read_document(file_path, fmt)
        records = pipe.records_from_document(doc, file_path.name)
        if as_json:
            out.extend(dict(r.as_flat_dict(), _source=file_path.name) for r in records)
            continue
        console.print(t("cli.extract.file", name=file_path.name, status=doc.status.value, count=len(records)))
        for i, record in enumerate(records, 1):
            table = Table(title=f"#{i}", show_header=False)
            table.add_column(style="cyan")
            table.add_column()
            for key, value in record.as_flat_dict().items():
                table.add_row(key, value)
            console.print(table)
    if as_json:
        console.print_json(json.dumps(out, ensure_ascii=False))


@app.command("import")
def import_documents(
    files: List[Path] = typer.Argument(None, help="Documents or folders (defaults to Inbox/)"),
    path: Path = typer.Option(None, "--path", "-p", help="Workspace path"),
    save: bool = typer.Option(False, "--save", help="Save valid, non-duplicate records"),
    expired: str = typer.Option(None, "--expired", help="Expiry date for records that carry none"),
):
    """Run the full batch: extract, validate, reconcile, export (and optionally save)."""
    ws = _open_workspace(path)
    candidates = _collect_files(ws, files)
    if not candidates:
        console.print(f"[yellow]{t('cli.run.no_files')}[/yellow]")
        raise typer.Exit(1)

    tm = telemetry.Telemetry(ws)
    tm.start_stage("total")
    console.print(t("cli.run.found_files", count=len(candidates)))

    for file_path in candidates:
        if file_path.exists():
            _log_manifest(ws, "ingest", ingest.calculate_sha256(file_path), str(file_path), "new")

    repo = LocalRepository(ws.db_path)
    pipe = pipeline.BatchPipeline(
        repo,
        storage=LocalFileStorage(ws.uploads),
        extractor=Extractor.from_settings(),
        max_bytes=config.settings.max_file_bytes,
        expired_default=expired or config.settings.config.expired_default,
        default_bank=config.settings.default_bank,
    )

    tm.start_stage("extract")
    with Progress(SpinnerColumn(), BarColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console) as progress:
        task = progress.add_task(t("cli.run.extracting"), total=len(candidates))

        def on_file(report):
            _log_manifest(ws, "import", "N/A", report.filename, report.status,
                          {"records": report.records, "error": report.error})
            progress.advance(task)

        result = pipe.run(candidates, on_file=on_file)
    tm.end_stage("extract")
    tm.log_batch(result)

    tm.start_stage("export")
    workbook = export.generate_review_workbook(result, ws.export_path("review", tm.run_id, ".xlsx"))
    errors_csv = None
    if result.errors or result.validation.errors:
        errors_csv = export.generate_errors_csv(result, ws.export_path("errors", tm.run_id, ".csv"))
    tm.end_stage("export")

    saved = None
    if save:
        tm.start_stage("save")
        saved = pipeline.save_records(result, repo)
        tm.log_save(saved)
        tm.end_stage("save")

    tm.end_stage("total")
    tm.save()

    _print_summary(result, tm, saved)
    console.print(t("cli.run.paths.workbook", path=workbook))
    if errors_csv:
        console.print(t("cli.run.paths.errors", path=errors_csv))
    console.print(f"[green]{t('cli.run.done')}[/green]")


def _print_summary(result, tm, saved):
    console.print("\n")
    files = Table(title=t("cli.run.files_title"), show_header=True, header_style="bold magenta")
    files.add_column(t("cli.run.col_file"))
    files.add_column(t("cli.run.col_status"))
    files.add_column(t("cli.run.col_records"), justify="right")
    for report in result.files:
        style = {"error": "red", "empty": "yellow", "degraded": "yellow"}.get(report.status, "green")
        files.add_row(report.filename, f"[{style}]{report.status}[/{style}]", str(report.records))
    console.print(files)

    for err in result.validation.errors:
        label = err.record.get(FieldKey.NO_ORDER) or f"#{err.record_index + 1}"
        console.print(f"[red]✗ {label}[/red] ({err.record.source_file}): {'; '.join(err.field_errors)}")

    rec = result.reconciliation
    if rec.missing_customers:
        console.print(t("cli.run.missing_customers", values=", ".join(rec.missing_customers)))
    if rec.missing_orders:
        console.print(t("cli.run.missing_orders", values=", ".join(rec.missing_orders)))
    if rec.missing_field_staff:
        console.print(t("cli.run.missing_staff", values=", ".join(rec.missing_field_staff)))

    table = Table(title=t("cli.run.summary_title"), show_header=True, header_style="bold magenta")
    table.add_column(t("cli.status.col_metric"))
    table.add_column(t("cli.status.col_value"))
    m = tm.metrics
    table.add_row(t("cli.run.duration"), f"{m.duration:.2f}s")
    table.add_row(t("cli.status.files_processed"), f"{m.total_files - m.failed_files}/{m.total_files}")
    table.add_row(t("cli.run.records"), str(m.records))
    table.add_row(t("cli.run.valid"), f"[green]{m.valid}[/green]")
    table.add_row(t("cli.run.invalid"), f"[red]{m.invalid}[/red]" if m.invalid else "0")
    table.add_row(t("cli.run.duplicates"), f"[yellow]{m.duplicates}[/yellow]" if m.duplicates else "0")
    table.add_row(t("cli.run.all_valid"), "✓" if rec.is_all_valid else "✗")
    if saved is not None:
        table.add_row(t("cli.run.saved"), str(len(saved.saved_ids)))
    console.print(table)
    console.print(f"[dim]Run ID: {tm.run_id}[/dim]")


@app.command()
def reference(
    file: Path = typer.Argument(..., help="YAML file with customers, orders and field_staff"),
    path: Path = typer.Option(None, "--path", "-p", help="Workspace path"),
):
    """Load reference data (customers, orders, field staff) into the workspace store."""
    ws = _open_workspace(path)
    repo = LocalRepository(ws.db_path)
    try:
        counts = repo.load_reference_file(file)
    except (OSError, ValueError, AttributeError, yaml.YAMLError) as e:
        console.print(f"[red]{t('cli.reference.failed', error=str(e))}[/red]")
        raise typer.Exit(1)
    console.print(t("cli.reference.loaded", **counts))


@app.command()
def chat(
    chat_id: str = typer.Option("local", "--chat-id", help="Conversation id"),
    path: Path = typer.Option(None, "--path", "-p", help="Workspace path"),
):
    """Talk to the collection bot in the terminal. '/photo <file>' sends a photo, '/quit' exits."""
    ws = _open_workspace(path)
    repo = LocalRepository(ws.db_path)
    machine = ConversationMachine(repo, LocalFileStorage(ws.uploads), config.settings.default_bank)
    driver = ConversationDriver(machine, JsonSessionStore(ws.sessions))

    console.print(Panel.fit(t("cli.chat.title", chat_id=chat_id), style="bold blue"))
    message = InboundMessage(chat_id=chat_id, command="help")
    while True:
        for reply in driver.receive(message):
            console.print(f"[bold cyan]bot>[/bold cyan] {reply.text}")
            if reply.options:
                console.print(f"[dim]{' | '.join(reply.options)}[/dim]")
        try:
            line = console.input("[bold]you>[/bold] ")
        except EOFError:
            break
        text = line.strip()
        if text in ("/quit", "/exit"):
            break
        if text.split(maxsplit=1)[:1] == ["/photo"]:
            photo = Path(text[len("/photo"):].strip())
            try:
                data = photo.read_bytes()
            except OSError as e:
                console.print(f"[red]{e}[/red]")
                message = InboundMessage(chat_id=chat_id, text="")
                continue
            message = InboundMessage(chat_id=chat_id, attachment=Attachment(filename=photo.name, content=data))
        else:
            message = InboundMessage(chat_id=chat_id, text=text)


if __name__ == "__main__":
    app()
