"""
CLI 命令模块 - shiftbot 的所有命令行命令定义。

命令体系（Typer）：
- onboard：初始化配置文件和排班表
- agent：直接与排班助手对话（单条消息或交互式对话）
- history：查看 / 清空某个用户的会话历史，列出所有会话
- status：查看系统状态

技术栈：
- Typer：CLI 框架（基于 Click，支持类型注解自动生成帮助文档）
- Rich：终端美化输出（Markdown 渲染、表格）
- prompt_toolkit：交互式输入（历史记录、多行粘贴）
"""

import asyncio
import os
import select
import signal
import sys
from pathlib import Path

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table
from rich.text import Text

from shiftbot import __logo__, __version__

app = typer.Typer(
    name="shiftbot",
    help=f"{__logo__} shiftbot - Shift scheduling assistant",
    no_args_is_help=True,
)

console = Console()
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit", ":q"}
DEFAULT_CLI_USER = "cli-user"

# ---------------------------------------------------------------------------
# CLI 输入：使用 prompt_toolkit 实现编辑、粘贴、历史记录
# ---------------------------------------------------------------------------

_PROMPT_SESSION: PromptSession | None = None
_SAVED_TERM_ATTRS = None


def _flush_pending_tty_input() -> None:
    """清除 Agent 处理期间残留在终端里的按键输入。"""
    try:
        fd = sys.stdin.fileno()
        if not os.isatty(fd):
            return
    except (OSError, ValueError):
        return

    try:
        import termios
        termios.tcflush(fd, termios.TCIFLUSH)
        return
    except (ImportError, OSError):
        pass

    try:
        while True:
            ready, _, _ = select.select([fd], [], [], 0)
            if not ready or not os.read(fd, 4096):
                break
    except OSError:
        return


def _restore_terminal() -> None:
    """恢复终端到进入交互模式前的状态（回显、行缓冲等）。"""
    if _SAVED_TERM_ATTRS is None:
        return
    try:
        import termios
        termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, _SAVED_TERM_ATTRS)
    except (ImportError, OSError):
        pass


def _init_prompt_session() -> None:
    """创建 prompt_toolkit 会话，输入历史保存在 ~/.shiftbot/cli_history。"""
    global _PROMPT_SESSION, _SAVED_TERM_ATTRS

    try:
        import termios
        _SAVED_TERM_ATTRS = termios.tcgetattr(sys.stdin.fileno())
    except (ImportError, OSError):
        pass

    history_file = Path.home() / ".shiftbot" / "cli_history"
    history_file.parent.mkdir(parents=True, exist_ok=True)

    _PROMPT_SESSION = PromptSession(
        history=FileHistory(str(history_file)),
        enable_open_in_editor=False,
        multiline=False,
    )


def _print_agent_response(response: str, render_markdown: bool) -> None:
    content = response or ""
    body = Markdown(content) if render_markdown else Text(content)
    console.print()
    console.print(f"[cyan]{__logo__} shiftbot[/cyan]")
    console.print(body)
    console.print()


def _is_exit_command(command: str) -> bool:
    return command.lower() in EXIT_COMMANDS


async def _read_interactive_input_async() -> str:
    if _PROMPT_SESSION is None:
        raise RuntimeError("Call _init_prompt_session() first")
    try:
        with patch_stdout():
            return await _PROMPT_SESSION.prompt_async(HTML("<b fg='ansiblue'>You:</b> "))
    except EOFError as exc:
        raise KeyboardInterrupt from exc


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} shiftbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
):
    """shiftbot CLI 根命令回调。处理全局选项（如 --version）。"""
    pass


# ============================================================================
# Onboard / Setup
# ============================================================================


@app.command()
def onboard():
    """
    初始化 shiftbot。

    1. 在 ~/.shiftbot/ 下创建默认配置文件 config.json
    2. 创建会话历史目录
    3. 创建空的排班表 shifts.json（已存在则保留）
    """
    from shiftbot.config.loader import get_config_path, save_config
    from shiftbot.config.schema import Config
    from shiftbot.shifts.board import BoardData, ShiftBoard
    from shiftbot.utils.helpers import ensure_dir

    config_path = get_config_path()

    if config_path.exists():
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
        if not typer.confirm("Overwrite?"):
            raise typer.Exit()

    config = Config()
    save_config(config)
    console.print(f"[green]✓[/green] Created config at {config_path}")

    history_dir = ensure_dir(config.history_path)
    console.print(f"[green]✓[/green] Created history directory at {history_dir}")

    board_path = config.board_path
    if not board_path.exists():
        asyncio.run(ShiftBoard(board_path).save(BoardData()))
        console.print(f"[green]✓[/green] Created shift board at {board_path}")

    console.print(f"\n{__logo__} shiftbot is ready!")
    console.print("\nNext steps:")
    console.print("  1. Add your API key to [cyan]~/.shiftbot/config.json[/cyan] (provider.apiKey)")
    console.print("     or export GEMINI_API_KEY")
    console.print(f"  2. Add members and rules to [cyan]{board_path}[/cyan]")
    console.print("  3. Chat: [cyan]shiftbot agent -m \"Can I take tomorrow off?\"[/cyan]")


def _make_gateway(config):
    """根据配置创建 LiteLLM 模型网关。"""
    from shiftbot.providers.litellm_provider import LiteLLMGateway

    p = config.provider
    return LiteLLMGateway(
        model=config.agent.model,
        api_key=p.api_key or None,
        api_base=p.api_base,
        temperature=config.agent.temperature,
        max_tokens=config.agent.max_tokens,
        extra_headers=p.extra_headers,
    )


def _make_agent_loop(config, bus):
    """按配置装配 AgentLoop：模型网关、历史存储、排班工具、上下文策略。"""
    from shiftbot.agent.context import SHIFT_MANAGER_PROMPT, ContextBuilder
    from shiftbot.agent.loop import AgentLoop
    from shiftbot.agent.tools import build_default_registry
    from shiftbot.session.manager import JsonlHistoryStore
    from shiftbot.shifts.board import ShiftBoard

    board = ShiftBoard(config.board_path)
    tools = build_default_registry(
        board,
        timezone=config.shifts.timezone,
        send_callback=bus.publish_outbound,
        broadcast_to=config.line.broadcast_to,
    )
    context = ContextBuilder(
        system_prompt=config.agent.system_prompt or SHIFT_MANAGER_PROMPT,
        interval=config.agent.system_prompt_interval,
        resolve_member_name=board.member_name,
    )
    return AgentLoop(
        gateway=_make_gateway(config),
        history=JsonlHistoryStore(config.history_path),
        tools=tools,
        context=context,
        bus=bus,
        max_iterations=config.agent.max_iterations,
        user_turn_limit=config.agent.user_turn_limit,
        fetch_cap=config.agent.fetch_cap,
        timeout=config.agent.timeout_seconds,
    )


# ============================================================================
# Agent Commands
# ============================================================================


@app.command()
def agent(
    message: str = typer.Option(None, "--message", "-m", help="Message to send to the agent"),
    user: str = typer.Option(DEFAULT_CLI_USER, "--user", "-u", help="User ID the conversation belongs to"),
    markdown: bool = typer.Option(True, "--markdown/--no-markdown", help="Render assistant output as Markdown"),
    logs: bool = typer.Option(False, "--logs/--no-logs", help="Show shiftbot runtime logs during chat"),
):
    """
    直接与排班助手对话。

    1. 单条消息模式：shiftbot agent -m "明天能请假吗？"
    2. 交互模式：shiftbot agent → 进入交互式对话循环（exit / Ctrl+C 退出）
    """
    from loguru import logger

    from shiftbot.bus.queue import MessageBus
    from shiftbot.config.loader import load_config
    from shiftbot.errors import ShiftbotError

    config = load_config()
    bus = MessageBus()
    agent_loop = _make_agent_loop(config, bus)

    if logs:
        logger.enable("shiftbot")
    else:
        logger.disable("shiftbot")

    def _thinking_ctx():
        if logs:
            from contextlib import nullcontext
            return nullcontext()
        return console.status("[dim]shiftbot is thinking...[/dim]", spinner="dots")

    async def _ask(text: str) -> None:
        try:
            with _thinking_ctx():
                response = await agent_loop.handle_message(user, text)
        except ShiftbotError as e:
            console.print(f"[red]Error: {e}[/red]")
            return
        _print_agent_response(response, render_markdown=markdown)
        await _drain_broadcasts(bus)

    if message:
        asyncio.run(_ask(message))
        return

    _init_prompt_session()
    console.print(f"{__logo__} Interactive mode as [bold]{user}[/bold] (type [bold]exit[/bold] or [bold]Ctrl+C[/bold] to quit)\n")

    def _exit_on_sigint(signum, frame):
        _restore_terminal()
        console.print("\nGoodbye!")
        os._exit(0)

    signal.signal(signal.SIGINT, _exit_on_sigint)

    async def run_interactive():
        while True:
            try:
                _flush_pending_tty_input()
                command = (await _read_interactive_input_async()).strip()
                if not command:
                    continue
                if _is_exit_command(command):
                    _restore_terminal()
                    console.print("\nGoodbye!")
                    break
                await _ask(command)
            except KeyboardInterrupt:
                _restore_terminal()
                console.print("\nGoodbye!")
                break

    asyncio.run(run_interactive())


async def _drain_broadcasts(bus) -> None:
    """CLI 没有 LINE 渠道：把 shiftCallOut 排队的广播直接打印出来。"""
    while bus.outbound_size:
        msg = await bus.consume_outbound()
        console.print(f"[magenta]📣 broadcast → {msg.channel}:{msg.chat_id}[/magenta]")
        console.print(Text(msg.content))


# ============================================================================
# History Commands
# ============================================================================


history_app = typer.Typer(help="Inspect conversation history")
app.add_typer(history_app, name="history")


@history_app.command("list")
def history_list():
    """列出所有存在历史记录的用户。"""
    from shiftbot.config.loader import load_config
    from shiftbot.session.manager import JsonlHistoryStore

    store = JsonlHistoryStore(load_config().history_path)
    sessions = store.list_sessions()
    if not sessions:
        console.print("No conversation history.")
        return

    table = Table(title="Conversations")
    table.add_column("User", style="cyan")
    table.add_column("Updated")
    table.add_column("Size", justify="right")
    for s in sessions:
        table.add_row(s["key"], s["updated_at"][:19], f"{s['size']} B")
    console.print(table)


@history_app.command("show")
def history_show(
    user: str = typer.Argument(DEFAULT_CLI_USER, help="User ID"),
    turns: int = typer.Option(5, "--turns", "-n", help="Number of user turns to show"),
    cap: int = typer.Option(50, "--cap", help="Maximum number of records to read"),
):
    """按时间顺序显示某个用户最近的会话轮次。"""
    from shiftbot.config.loader import load_config
    from shiftbot.session.manager import JsonlHistoryStore
    from shiftbot.utils.helpers import to_text, truncate_string

    store = JsonlHistoryStore(load_config().history_path)
    window = asyncio.run(store.load_recent(user, turns, cap))
    if not window:
        console.print(f"No history for {user}.")
        return

    table = Table(title=f"History: {user}")
    table.add_column("#", justify="right")
    table.add_column("Role", style="cyan")
    table.add_column("Content")
    for turn in window:
        lines = list(turn.texts)
        lines += [f"→ {r.name}({to_text(r.args)})" for r in turn.tool_requests]
        lines += [
            f"← {r.name}: {to_text(r.error if r.is_error else r.result)}"
            for r in turn.tool_results
        ]
        table.add_row(str(turn.sequence), turn.role, truncate_string("\n".join(lines), 300))
    console.print(table)


@history_app.command("clear")
def history_clear(
    user: str = typer.Argument(..., help="User ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """清空某个用户的会话历史。"""
    from shiftbot.config.loader import load_config
    from shiftbot.session.manager import JsonlHistoryStore

    if not yes and not typer.confirm(f"Clear history for {user}?"):
        raise typer.Exit()

    store = JsonlHistoryStore(load_config().history_path)
    asyncio.run(store.clear(user))
    console.print(f"[green]✓[/green] Cleared history for {user}")


# ============================================================================
# Status
# ============================================================================


@app.command()
def status():
    """显示配置、存储路径、模型和 LINE 渠道的状态。"""
    from shiftbot.config.loader import get_config_path, load_config

    config_path = get_config_path()
    config = load_config()

    def mark(ok: bool) -> str:
        return "[green]✓[/green]" if ok else "[red]✗[/red]"

    console.print(f"{__logo__} shiftbot Status\n")
    console.print(f"Config: {config_path} {mark(config_path.exists())}")
    console.print(f"History: {config.history_path} {mark(config.history_path.exists())}")
    console.print(f"Shift board: {config.board_path} {mark(config.board_path.exists())}")
    console.print(f"Model: {config.agent.model}")
    console.print(f"Max iterations: {config.agent.max_iterations}")

    has_key = bool(config.provider.api_key)
    console.print(f"API key: {'[green]✓[/green]' if has_key else '[dim]not set (using environment)[/dim]'}")
    if config.provider.api_base:
        console.print(f"API base: [green]{config.provider.api_base}[/green]")

    line = config.line
    console.print(f"LINE token: {'[green]✓[/green]' if line.channel_access_token else '[dim]not set[/dim]'}")
    console.print(f"LINE broadcast group: {line.broadcast_to or '[dim]not set[/dim]'}")


if __name__ == "__main__":
    app()
