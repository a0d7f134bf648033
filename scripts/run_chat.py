#!/usr/bin/env python
"""터미널에서 데이터베이스와 대화하는 스크립트.

사용법:
    python scripts/run_chat.py                          # 설정의 개발 토큰 또는 로그인
    python scripts/run_chat.py --username me            # 로그인
    python scripts/run_chat.py --register --email a@b.c # 회원가입

명령어:
    /list           커넥션 목록
    /use <번호>     커넥션 선택 및 테스트
    /retest         활성 커넥션 재테스트
    /add            커넥션 추가
    /delete <번호>  커넥션 삭제
    /quit           종료
"""

import argparse
import asyncio
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.syntax import Syntax
from rich.table import Table

# 프로젝트 루트 경로 추가
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from dbchat.core.config import Settings
from dbchat.core.exceptions import LogicalFailure, TransportFailure, ValidationError
from dbchat.core.log_config import configure_logging
from dbchat.core.models import (
    ChartKind,
    ChatTurn,
    ConnectionDraft,
    EngineKind,
    Role,
    SessionState,
)
from dbchat.display.sql_formatter import SQLFormatter
from dbchat.session.context import SessionContext

console = Console()
formatter = SQLFormatter()

PREVIEW_ROWS = 10

STATUS_STYLES = {
    SessionState.IDLE: ("⚪ 선택 안 됨", "dim"),
    SessionState.TESTING: ("🔄 테스트 중", "yellow"),
    SessionState.CONNECTED: ("✅ 연결됨", "green"),
    SessionState.FAILED: ("❌ 연결 실패", "red"),
}


def render_connections(context: SessionContext) -> None:
    """커넥션 목록 테이블 출력."""
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", width=4)
    table.add_column("이름")
    table.add_column("엔진")
    table.add_column("데이터베이스")
    table.add_column("생성일")

    active = context.session.active
    for idx, conn in enumerate(context.connections, start=1):
        style = "bold cyan" if active and active.id == conn.id else None
        created = conn.created_at.strftime("%Y-%m-%d") if conn.created_at else "-"
        table.add_row(str(idx), conn.name, conn.engine.value, conn.database, created, style=style)

    if not context.connections:
        console.print("[dim]저장된 커넥션이 없습니다. /add 로 추가하세요.[/dim]")
        return
    console.print(table)


def render_status(context: SessionContext) -> None:
    """세션 상태 출력."""
    status = context.session.status
    label, style = STATUS_STYLES[status.state]
    active = context.session.active
    name = active.name if active else "-"
    console.print(f"[{style}]{label}[/{style}] {name}")
    if status.message:
        console.print(f"   [red]{status.message}[/red]")


def render_results(turn: ChatTurn) -> None:
    """결과 셋 미리보기 출력."""
    rows = turn.results or []
    if not rows:
        console.print("[dim]결과가 없습니다 (0행).[/dim]")
        return

    table = Table(show_header=True, header_style="bold blue")
    columns = list(rows[0].keys())
    for column in columns:
        table.add_column(str(column))
    for row in rows[:PREVIEW_ROWS]:
        table.add_row(*("NULL" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)

    if len(rows) > PREVIEW_ROWS:
        console.print(f"[dim]Showing {PREVIEW_ROWS} of {len(rows)} results[/dim]")


def render_turn(turn: ChatTurn, context: SessionContext) -> None:
    """대화 턴 하나를 출력."""
    if turn.role is Role.USER:
        console.print(f"[bold]🙋 {turn.content}[/bold]")
        return

    if turn.error:
        console.print(Panel(turn.content, title="Error", border_style="red"))
        return

    if turn.is_text_only:
        console.print(f"🤖 {turn.content}")
        return

    active = context.session.active
    sql = formatter.format(turn.content, active.engine if active else None)
    console.print(Panel(Syntax(sql, "sql", word_wrap=True), title="SQL Query", border_style="green"))
    render_results(turn)
    if turn.chart and turn.chart.kind is not ChartKind.NONE:
        values = ", ".join(turn.chart.value_columns) or "-"
        console.print(
            f"[dim]📊 추천 차트: {turn.chart.kind.value} "
            f"(라벨: {turn.chart.label_column}, 값: {values})[/dim]"
        )


def pick_connection(context: SessionContext, arg: str):
    """번호 인자로 커넥션을 찾는다."""
    if not arg.isdigit() or not 1 <= int(arg) <= len(context.connections):
        console.print(f"[red]잘못된 번호: {arg}[/red]")
        return None
    return context.connections[int(arg) - 1]


async def prompt(text: str, **kwargs) -> str:
    return await asyncio.to_thread(Prompt.ask, text, **kwargs)


async def add_connection(context: SessionContext) -> None:
    """대화형으로 커넥션을 추가."""
    engine = await prompt(
        "엔진", choices=[kind.value for kind in EngineKind], default=EngineKind.MYSQL.value
    )
    draft = ConnectionDraft(
        name=await prompt("커넥션 이름 *", default=""),
        engine=EngineKind(engine),
        host=await prompt("호스트", default=""),
        port=await prompt("포트 (선택)", default=""),
        username=await prompt("사용자명", default=""),
        password=await prompt("비밀번호", password=True, default=""),
        database=await prompt("데이터베이스 *", default=""),
    )
    try:
        connection = await context.add_connection(draft)
    except ValidationError as e:
        console.print(f"[red]{e}[/red]")
        return
    except LogicalFailure as e:
        console.print(f"[red]{e.detail}[/red]")
        return
    except TransportFailure:
        console.print("[red]Error saving connection. Please try again.[/red]")
        return
    console.print(f"[green]Connection saved successfully! ({connection.name})[/green]")


async def handle_command(context: SessionContext, line: str) -> bool:
    """명령어를 처리. 종료해야 하면 False."""
    command, _, arg = line.partition(" ")
    arg = arg.strip()

    if command == "/quit":
        return False
    if command == "/list":
        await context.refresh_connections()
        render_connections(context)
    elif command == "/use":
        connection = pick_connection(context, arg)
        if connection:
            with console.status("커넥션 테스트 중..."):
                await context.session.select(connection)
            render_status(context)
            for turn in context.session.transcript:
                render_turn(turn, context)
    elif command == "/retest":
        with console.status("커넥션 재테스트 중..."):
            await context.session.retest()
        render_status(context)
    elif command == "/add":
        await add_connection(context)
    elif command == "/delete":
        connection = pick_connection(context, arg)
        if connection and await prompt(f"'{connection.name}' 커넥션을 삭제할까요?", choices=["y", "n"]) == "y":
            if not await context.delete_connection(connection.id):
                console.print("[red]Failed to delete connection[/red]")
    else:
        console.print(f"[red]알 수 없는 명령어: {command}[/red]")
    return True


async def authenticate(args: argparse.Namespace, settings: Settings) -> SessionContext:
    """인자에 따라 컨텍스트 생성."""
    if not args.username and settings.api_token:
        return SessionContext.from_token(settings, settings.api_token)

    username = args.username or Prompt.ask("사용자명")
    password = Prompt.ask("비밀번호", password=True)
    if args.register:
        email = args.email or Prompt.ask("이메일")
        return await SessionContext.register(settings, username, password, email)
    return await SessionContext.login(settings, username, password)


async def run(args: argparse.Namespace) -> int:
    settings = Settings()
    if args.base_url:
        settings = settings.model_copy(update={"api_base_url": args.base_url})
    configure_logging(args.log_level or settings.log_level)

    try:
        context = await authenticate(args, settings)
    except LogicalFailure as e:
        console.print(f"[red]{e.detail or 'Authentication failed. Please check your credentials.'}[/red]")
        return 1
    except TransportFailure:
        console.print("[red]Authentication error. Please try again.[/red]")
        return 1

    async with context:
        console.print(Panel("🗄️  Database Chat\n자연어로 데이터베이스와 대화하세요", border_style="cyan"))
        await context.refresh_connections()
        render_connections(context)

        while True:
            line = (await prompt(">")).strip()
            if not line:
                continue
            if line.startswith("/"):
                if not await handle_command(context, line):
                    break
                continue

            if not context.session.is_connected:
                console.print("[yellow]먼저 /use 로 커넥션을 선택하세요.[/yellow]")
                continue

            with console.status("질의 실행 중..."):
                exchange = await context.orchestrator.execute(line)
            if exchange and exchange.answer:
                render_turn(exchange.answer, context)

    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Database Chat 터미널 클라이언트")
    parser.add_argument("--base-url", help="백엔드 API 주소")
    parser.add_argument("--username", help="로그인 사용자명")
    parser.add_argument("--register", action="store_true", help="회원가입 후 시작")
    parser.add_argument("--email", help="회원가입 이메일")
    parser.add_argument("--log-level", help="로그 레벨 (기본값: 설정)")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
