"""
Ensemble CLI - イベント・RSVP管理用CLI
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import Settings, load_settings
from ..integrations.firestore_client import DocumentReference, DocumentStoreError, FirestoreClient
from ..integrations.memory_store import InMemoryFirestoreClient
from ..models.event import Event, EventStatus, RoleNeed, to_datetime
from ..models.profile import UserProfile
from ..models.repository import EncryptionManager, ProfileRepository, RepositoryError
from ..models.rsvp import RSVPRecord, RSVPStatus
from ..services.events import EventService, InvalidTransitionError
from ..services.inquiries import InquiryService
from ..services.participants import ParticipantService
from ..services.reports import ReportService, to_csv, write_csv
from ..services.roster import RosterService
from ..services.rsvp import RSVPSynchronizer

console = Console()
app = typer.Typer(help="Ensemble CLI - イベント・出欠管理ツール")

logger = logging.getLogger(__name__)

# Failures reported to the user instead of a traceback
HANDLED_ERRORS = (DocumentStoreError, RepositoryError, InvalidTransitionError, ValueError)

STATUS_STYLES = {
    EventStatus.DRAFT: "yellow",
    EventStatus.PUBLISHED: "green",
    EventStatus.CANCELLED: "red",
}


class EnsembleCLI:
    """
    CLIセッション
    - Firestore（またはインメモリ）接続
    - サービス生成
    - YAMLフィクスチャ投入
    """

    def __init__(self, settings: Settings, memory: bool = False, fixture: Optional[Path] = None):
        self.settings = settings
        self.memory = memory
        self.fixture = fixture
        self.client: Optional[FirestoreClient] = None
        self._profiles: Optional[ProfileRepository] = None

    async def connect(self) -> FirestoreClient:
        """Firestore初期化"""
        if self.memory:
            self.client = InMemoryFirestoreClient()
        else:
            self.client = FirestoreClient(self.settings.firestore)
        await self.client.connect()

        if self.fixture:
            counts = await self.load_fixture(self.fixture)
            logger.info(f"フィクスチャ読み込み: {counts}")
        return self.client

    async def close(self):
        if self.client:
            await self.client.disconnect()

    @property
    def events(self) -> EventService:
        return EventService(self.client)

    @property
    def rsvps(self) -> RSVPSynchronizer:
        return RSVPSynchronizer(self.client)

    @property
    def profiles(self) -> ProfileRepository:
        # one EncryptionManager per session so a generated dev key stays stable
        if self._profiles is None or self._profiles.client is not self.client:
            self._profiles = ProfileRepository(self.client, EncryptionManager(self.settings.encryption_key))
        return self._profiles

    @property
    def inquiries(self) -> InquiryService:
        return InquiryService(self.client, self.profiles, self.profiles.encryption_manager)

    async def load_fixture(self, path: Path) -> Dict[str, int]:
        """
        YAMLフィクスチャを投入

        Format::

            events:
              - id: spring-concert
                title: Spring Concert
                start: "2025-04-12T19:00:00Z"
                status: published
            users:
              - uid: u1
                name: Alex Kim
                sections: [strings]
            rsvps:
              - eventId: spring-concert
                uid: u1
                status: accepted
            inquiries:
              - id: gala-request
                name: Dana Park
                email: dana@example.com
                event: {title: Spring Gala, date: "2025-05-02"}
                responses: {u1: accepted}

        Events are stored as written so that loosely shaped documents can be
        reproduced; users, RSVPs and inquiries go through their models.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        counts = {"events": 0, "users": 0, "rsvps": 0, "inquiries": 0}
        for raw in data.get("events") or []:
            raw = dict(raw)
            event_id = str(raw.pop("id"))
            await self.client.set_document(DocumentReference(collection="events", document_id=event_id), raw)
            counts["events"] += 1

        for raw in data.get("users") or []:
            raw = dict(raw)
            uid = str(raw.pop("uid"))
            await self.profiles.save(UserProfile.from_dict(uid, raw))
            counts["users"] += 1

        for raw in data.get("rsvps") or []:
            raw = dict(raw)
            event_id = str(raw.pop("eventId"))
            await self.rsvps.set_rsvp(event_id, raw)
            counts["rsvps"] += 1

        for raw in data.get("inquiries") or []:
            raw = dict(raw)
            responses = raw.pop("responses", None) or {}
            inquiry_id = raw.pop("id", None)
            inquiry = await self.inquiries.create_inquiry(raw, inquiry_id=str(inquiry_id) if inquiry_id else None)
            for uid, response in responses.items():
                await self.inquiries.record_response(inquiry.id, str(uid), response)
            counts["inquiries"] += 1

        return counts


@app.callback()
def main(
    ctx: typer.Context,
    memory: bool = typer.Option(False, "--memory", help="インメモリストアを使用（エミュレータ不要）"),
    fixture: Optional[Path] = typer.Option(None, "--fixture", exists=True, dir_okay=False,
                                           help="起動時に投入するYAMLフィクスチャ"),
):
    """Ensemble CLI"""
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    ctx.obj = EnsembleCLI(settings, memory=memory, fixture=fixture)


def _run(ctx: typer.Context, action):
    """接続 → action(cli) → 切断。既知のエラーは終了コード1"""
    cli: EnsembleCLI = ctx.obj

    async def _runner():
        await cli.connect()
        try:
            return await action(cli)
        finally:
            await cli.close()

    try:
        return asyncio.run(_runner())
    except HANDLED_ERRORS as e:
        console.print(f"❌ {str(e)}", style="red")
        raise typer.Exit(code=1)


def _parse_statuses(values: Optional[List[str]]) -> Optional[List[EventStatus]]:
    if not values:
        return None
    try:
        return [EventStatus(value.lower()) for value in values]
    except ValueError as e:
        raise typer.BadParameter(str(e))


def _parse_time(value: Optional[str], name: str):
    if value is None:
        return None
    parsed = to_datetime(value)
    if parsed is None:
        raise typer.BadParameter(f"{name}: 日時を解釈できません ({value})")
    return parsed


def _format_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else "-"


def _events_table(events: List[Event], title: str = "Events") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Start")
    table.add_column("Location")
    table.add_column("Status")
    table.add_column("Needed", justify="right")

    for event in events:
        style = STATUS_STYLES.get(event.status, "white")
        table.add_row(
            event.id,
            event.title,
            _format_time(event.start),
            event.location or "-",
            f"[{style}]{event.status.value}[/{style}]",
            str(event.needed_headcount())
        )
    return table


@app.command()
def events(
    ctx: typer.Context,
    status: Optional[List[str]] = typer.Option(None, "--status", "-s", help="draft / published / cancelled"),
):
    """イベント一覧"""
    statuses = _parse_statuses(status)

    async def _events(cli: EnsembleCLI):
        return await cli.events.list_events(statuses)

    result = _run(ctx, _events)
    console.print(_events_table(result))
    console.print(f"{len(result)} 件")


@app.command()
def watch(
    ctx: typer.Context,
    status: List[str] = typer.Option(["published"], "--status", "-s", help="対象ステータス"),
    duration: float = typer.Option(60.0, help="購読する秒数"),
):
    """公開イベントのライブ購読"""
    statuses = _parse_statuses(status)

    async def _watch(cli: EnsembleCLI):
        def _on_events(items: List[Event]):
            console.print(_events_table(items, title=f"Upcoming ({len(items)})"))

        unsubscribe = cli.events.subscribe_upcoming_events(statuses, _on_events)
        try:
            await asyncio.sleep(duration)
        finally:
            unsubscribe()

    _run(ctx, _watch)


@app.command("create-event")
def create_event(
    ctx: typer.Context,
    title: str = typer.Argument(..., help="イベント名"),
    created_by: str = typer.Option(..., "--by", help="作成者UID"),
    start: Optional[str] = typer.Option(None, help="開始日時 (ISO-8601)"),
    end: Optional[str] = typer.Option(None, help="終了日時 (ISO-8601)"),
    location: str = typer.Option("", help="会場"),
    description: str = typer.Option("", help="説明"),
    role: Optional[List[str]] = typer.Option(None, "--role", help="必要人数 role=count（複数可）"),
):
    """イベント作成（draft）"""
    start_at = _parse_time(start, "start")
    end_at = _parse_time(end, "end")

    roles_needed = []
    for entry in role or []:
        name, _, count = entry.partition("=")
        if not name or not count.isdigit():
            raise typer.BadParameter(f"--role は role=count 形式で指定してください: {entry}")
        roles_needed.append(RoleNeed(role=name, count=int(count)))

    async def _create(cli: EnsembleCLI):
        return await cli.events.create_event(
            title=title,
            created_by=created_by,
            start=start_at,
            end=end_at,
            location=location,
            description=description,
            roles_needed=roles_needed,
        )

    event = _run(ctx, _create)
    console.print(Panel.fit(
        f"🎉 イベント作成\n\n"
        f"ID: {event.id}\n"
        f"タイトル: {event.title}\n"
        f"開始: {_format_time(event.start)}\n"
        f"必要人数: {event.needed_headcount()}",
        title="Event Created"
    ))


def _transition_command(ctx: typer.Context, event_id: str, method: str):
    async def _transition(cli: EnsembleCLI):
        return await getattr(cli.events, method)(event_id)

    event = _run(ctx, _transition)
    console.print(f"✅ {event.id}: {event.status.value}", style="green")


@app.command()
def publish(ctx: typer.Context, event_id: str = typer.Argument(..., help="イベントID")):
    """イベントを公開"""
    _transition_command(ctx, event_id, "publish_event")


@app.command()
def unpublish(ctx: typer.Context, event_id: str = typer.Argument(..., help="イベントID")):
    """公開を取り消して draft に戻す"""
    _transition_command(ctx, event_id, "unpublish_event")


@app.command()
def cancel(ctx: typer.Context, event_id: str = typer.Argument(..., help="イベントID")):
    """イベントを中止"""
    _transition_command(ctx, event_id, "cancel_event")


@app.command()
def delete(
    ctx: typer.Context,
    event_id: str = typer.Argument(..., help="イベントID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="確認なしで削除"),
):
    """イベントと関連する出欠データを削除"""
    if not yes:
        typer.confirm(f"{event_id} と関連データを削除しますか?", abort=True)

    async def _delete(cli: EnsembleCLI):
        return await cli.events.delete_event(event_id)

    if _run(ctx, _delete):
        console.print(f"🗑️  {event_id} を削除しました", style="green")
    else:
        console.print(f"⚠️  {event_id} は存在しません", style="yellow")


@app.command("rsvp-get")
def rsvp_get(
    ctx: typer.Context,
    event_id: str = typer.Argument(..., help="イベントID"),
    uid: str = typer.Argument(..., help="メンバーUID"),
):
    """メンバーの出欠を表示"""

    async def _get(cli: EnsembleCLI):
        return await cli.rsvps.find_rsvp(event_id, uid)

    found = _run(ctx, _get)
    if found is None:
        console.print("回答なし", style="yellow")
        raise typer.Exit(code=1)

    source, record = found
    console.print(f"{record.uid}: [bold]{record.status.value}[/bold] (source: {source.value}, "
                  f"updated: {_format_time(record.updated_at)})")


@app.command("rsvp-set")
def rsvp_set(
    ctx: typer.Context,
    event_id: str = typer.Argument(..., help="イベントID"),
    uid: str = typer.Argument(..., help="メンバーUID"),
    status: str = typer.Argument(..., help="accepted / declined / tentative / unanswered (yes/no/maybe も可)"),
    name: Optional[str] = typer.Option(None, help="表示名"),
    role: Optional[str] = typer.Option(None, help="担当パート"),
):
    """出欠を登録（3箇所のミラーへ書き込み）"""
    try:
        record = RSVPRecord(uid=uid, status=status, display_name=name, role=role)
    except ValueError as e:
        raise typer.BadParameter(str(e))

    async def _set(cli: EnsembleCLI):
        return await cli.rsvps.set_rsvp(event_id, record)

    saved = _run(ctx, _set)
    console.print(f"✅ {saved.uid}: {saved.status.value}", style="green")


@app.command()
def roster(
    ctx: typer.Context,
    event_id: str = typer.Argument(..., help="イベントID"),
    tentative: bool = typer.Option(False, "--tentative", help="未定（tentative）も含める"),
    rebuild: bool = typer.Option(False, "--rebuild", help="roster_members / roster_summary を再構築"),
):
    """参加者名簿"""

    async def _roster(cli: EnsembleCLI):
        service = RosterService(cli.client, cli.profiles)
        summary = await service.rebuild_event_roster(event_id, include_tentative=tentative) if rebuild else None
        entries = await service.load_roster(event_id, include_tentative=tentative)
        return entries, summary

    entries, summary = _run(ctx, _roster)

    table = Table(title=f"Roster: {event_id}")
    table.add_column("Name", style="cyan")
    table.add_column("Section")
    table.add_column("Instrument")
    table.add_column("Status")
    for entry in entries:
        style = "green" if entry.status == RSVPStatus.ACCEPTED else "yellow"
        table.add_row(entry.display_name, entry.section or "-", entry.instrument or "-",
                      f"[{style}]{entry.status.value}[/{style}]")
    console.print(table)

    if summary is not None:
        console.print(f"📋 再構築: {summary.count} 名 (yes {summary.yes_count} / maybe {summary.maybe_count})")


@app.command()
def reconcile(
    ctx: typer.Context,
    event_id: str = typer.Argument(..., help="イベントID"),
    dry_run: bool = typer.Option(False, "--dry-run", help="検出のみ（書き込みなし）"),
):
    """RSVPミラーの不整合を検出・修復"""

    async def _reconcile(cli: EnsembleCLI):
        return await cli.rsvps.reconcile_event(event_id, dry_run=dry_run)

    report = _run(ctx, _reconcile)

    table = Table(title=f"Reconcile: {event_id}")
    table.add_column("Mirror", style="cyan")
    table.add_column("Divergent", justify="right")
    table.add_column("Members")
    table.add_row("rsvps", str(len(report.repaired_legacy)), ", ".join(report.repaired_legacy) or "-")
    table.add_row("availability (flat)", str(len(report.repaired_flat)), ", ".join(report.repaired_flat) or "-")
    console.print(table)

    verb = "検出" if dry_run else "修復"
    console.print(f"{report.checked} 件確認、{report.repaired} 件{verb}")


@app.command()
def report(
    ctx: typer.Context,
    kind: str = typer.Argument("summary", help="summary / detail / participation"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="CSV出力先（省略時は標準出力）"),
    status: Optional[List[str]] = typer.Option(None, "--status", "-s", help="対象ステータス"),
):
    """出欠・参加集計レポート（CSV）"""
    statuses = _parse_statuses(status)
    if kind not in ("summary", "detail", "participation"):
        raise typer.BadParameter(f"不明なレポート種別: {kind}")

    async def _report(cli: EnsembleCLI) -> List[Dict[str, Any]]:
        service = ReportService(cli.client, cli.events)
        if kind == "summary":
            return await service.availability_summary(statuses)
        if kind == "participation":
            return [totals.to_row() for totals in await service.participation_totals(statuses)]
        return await service.availability_detail(statuses)

    rows = _run(ctx, _report)
    if output:
        write_csv(rows, output)
        console.print(f"📁 {len(rows)} 行を {output} に保存しました", style="green")
    else:
        typer.echo(to_csv(rows), nl=False)


@app.command()
def participants(ctx: typer.Context, event_id: str = typer.Argument(..., help="イベントID")):
    """全サブコレクションを統合した参加者一覧"""

    async def _participants(cli: EnsembleCLI):
        return await ParticipantService(cli.client).fetch_event_participants(event_id)

    people = _run(ctx, _participants)

    table = Table(title=f"Participants: {event_id}")
    table.add_column("UID", style="cyan")
    table.add_column("Name")
    table.add_column("Section")
    table.add_column("Status")
    table.add_column("Updated")
    for person in people:
        table.add_row(person.uid, person.name or "-", person.section or "-",
                      person.status.value, _format_time(person.updated_at))
    console.print(table)
    console.print(f"👥 {len(people)} 名")


def _parse_day(value: Optional[str], name: str):
    parsed = _parse_time(value, name)
    return parsed.date() if parsed else None


@app.command("inquiry-report")
def inquiry_report(
    ctx: typer.Context,
    date_from: Optional[str] = typer.Option(None, "--from", help="開始日 (YYYY-MM-DD)"),
    date_to: Optional[str] = typer.Option(None, "--to", help="終了日 (YYYY-MM-DD)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="CSV出力先（省略時は標準出力）"),
):
    """期間内の出演依頼と参加可メンバー（CSV）"""
    start = _parse_day(date_from, "--from")
    end = _parse_day(date_to, "--to")

    async def _report(cli: EnsembleCLI) -> List[Dict[str, Any]]:
        return await cli.inquiries.report_rows(start, end)

    rows = _run(ctx, _report)
    if output:
        write_csv(rows, output)
        console.print(f"📁 {len(rows)} 行を {output} に保存しました", style="green")
    else:
        typer.echo(to_csv(rows), nl=False)


@app.command()
def seed(ctx: typer.Context, fixture_file: Path = typer.Argument(..., exists=True, dir_okay=False,
                                                                help="YAMLフィクスチャ")):
    """YAMLからイベント・メンバー・出欠を投入"""

    async def _seed(cli: EnsembleCLI):
        return await cli.load_fixture(fixture_file)

    counts = _run(ctx, _seed)
    console.print(
        f"🌱 投入完了: events {counts['events']} / users {counts['users']} / rsvps {counts['rsvps']} "
        f"/ inquiries {counts['inquiries']}",
        style="green"
    )


@app.command()
def status(ctx: typer.Context):
    """システム状態確認"""

    async def _status(cli: EnsembleCLI):
        return cli.client.get_stats()

    stats = _run(ctx, _status)
    settings: Settings = ctx.obj.settings

    table = Table(title="System Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    table.add_row(
        "Firestore",
        "✅ Connected",
        f"{stats['backend']} / project: {settings.firestore.project_id}"
        + (f" / emulator: {settings.firestore.emulator_host}" if settings.firestore.emulator_host else "")
    )
    table.add_row(
        "Proxy",
        "✅ Configured" if settings.proxy_target_url else "⚠️  Not configured",
        settings.proxy_target_url or "-"
    )
    table.add_row(
        "Roles",
        "✅",
        f"super admins: {len(settings.super_admin_emails)}, admins: {len(settings.admin_emails)}, "
        f"performers: {len(settings.performer_emails)}"
    )
    console.print(table)


if __name__ == "__main__":
    app()
