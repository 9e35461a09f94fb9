#!/usr/bin/env python3
"""
LaTeX Master - terminal UI for the single-operation LaTeX agent.
Textual app: task input, streamed planner text, one line per operation, operator confirmation.
"""

import asyncio
import argparse
import logging
import os
import sys
import time
from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import VerticalScroll
from textual.widgets import Header, Footer, Input, Static, Collapsible
from textual.reactive import reactive
from textual.timer import Timer
from textual import on, work

from rich.text import Text
from rich.table import Table
from rich.markup import escape as rich_escape

from agent import AgentBusyError, AgentEvent, OperationAgent, PlannerClient, TaskReport
from backend import LocalFileSystem, normalize_path
from bedrock_service import BedrockService, PlannerError
from config import app_config, model_config, get_credentials_info, get_model_name
from sessions import TaskStore
from tools import EditorState

# Configure logging to file so it doesn't interfere with the TUI
logging.basicConfig(
    filename="latex_master.log",
    level=getattr(logging, app_config.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================================
# Constants
# ============================================================

SPINNER_FRAMES = ["⣷", "⣯", "⣟", "⡿", "⢿", "⣻", "⣽", "⣾"]

OPERATION_ICONS = {
    "read_file":          "\U0001f4c4 ",
    "list_files":         "\U0001f4c2 ",
    "get_file_structure": "\U0001f333 ",
    "search_in_files":    "\U0001f50d ",
    "get_project_info":   "ℹ️ ",
    "get_current_file":   "\U0001f4c4 ",
    "create_file":        "✏️ ",
    "edit_file":          "\U0001f527 ",
    "delete_file":        "\U0001f5d1 ",
    "create_directory":   "\U0001f4c1 ",
    "delete_directory":   "\U0001f5d1 ",
    "move_file":          "➡ ",
}

PROMPT_PLACEHOLDER = " ❯ What should I do with this LaTeX project?  (/help for commands)"

# Payload previews longer than this are collapsed
COLLAPSE_CHAR_THRESHOLD = 400


# ============================================================
# TUI Application
# ============================================================

class LatexMasterApp(App):
    """LaTeX Master - single-operation agent TUI"""

    TITLE = app_config.title
    ALLOW_SELECT = True

    CSS = """
    Screen {
        background: #0d1117;
    }

    #output-scroll {
        height: 1fr;
        border: none;
        padding: 1 2;
        scrollbar-size: 1 1;
        scrollbar-color: #30363d;
    }

    #output-scroll > Static {
        width: 100%;
        height: auto;
    }

    #output-scroll > Collapsible {
        width: 100%;
        height: auto;
        margin: 0 0 0 3;
    }

    Collapsible.-collapsed > Contents {
        display: none;
    }

    CollapsibleTitle {
        color: #6e7681;
        background: transparent;
        padding: 0;
        height: 1;
    }

    .text-stream {
        color: #8b949e;
        margin: 0 0 0 3;
        height: auto;
    }

    #user-input {
        dock: bottom;
        margin: 0 2 1 2;
        border: tall #30363d;
        background: #161b22;
        color: #c9d1d9;
        padding: 0 1;
    }

    #user-input:focus {
        border: tall #58a6ff;
    }

    #status-bar {
        dock: bottom;
        height: 1;
        background: #161b22;
        color: #6e7681;
        padding: 0 2;
    }

    Header {
        background: #010409;
        color: #f0f6fc;
        dock: top;
        height: 1;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "cancel_or_quit", "Stop / Quit", priority=True),
        Binding("ctrl+p", "pause", "Pause"),
        Binding("ctrl+l", "clear_screen", "Clear"),
    ]

    is_running = reactive(False)
    awaiting_confirmation = reactive(False)

    def __init__(self, working_directory: str = ".", **kwargs):
        super().__init__(**kwargs)
        self.working_directory = os.path.abspath(working_directory)
        self._confirm_future: Optional[asyncio.Future] = None
        self._current_text = ""
        self._text_widget: Optional[Static] = None
        self._agent: Optional[OperationAgent] = None
        self._planner: Optional[PlannerClient] = None
        self._editor = EditorState()
        self._store = TaskStore(self.working_directory)
        self._spinner_idx = 0
        self._spinner_timer: Optional[Timer] = None
        self._task_start_time: Optional[float] = None
        self._widget_counter = 0

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("", id="status-bar")
        yield VerticalScroll(id="output-scroll")
        yield Input(placeholder=PROMPT_PLACEHOLDER, id="user-input")
        yield Footer()

    # ============================================================
    # Output helpers -- write to the scroll area
    # ============================================================

    def _next_id(self, prefix: str = "out") -> str:
        self._widget_counter += 1
        return f"{prefix}-{self._widget_counter}"

    def _log(self, renderable) -> None:
        """Append a renderable to the output scroll area."""
        scroll = self.query_one("#output-scroll", VerticalScroll)
        scroll.mount(Static(renderable, id=self._next_id()))
        scroll.scroll_end(animate=False)

    def _log_collapsible(self, title: str, full_content: str, style: str = "#586e75") -> None:
        """Append a collapsed section to the output. Click the title to expand."""
        scroll = self.query_one("#output-scroll", VerticalScroll)
        body = Static(Text(full_content, style=style), id=self._next_id("body"))
        scroll.mount(Collapsible(body, title=title, collapsed=True, id=self._next_id("coll")))
        scroll.scroll_end(animate=False)

    def _clear_output(self) -> None:
        scroll = self.query_one("#output-scroll", VerticalScroll)
        scroll.remove_children()
        self._text_widget = None
        self._current_text = ""

    def _drop_stream(self) -> None:
        if self._text_widget:
            self._text_widget.remove()
        self._text_widget = None
        self._current_text = ""

    # ============================================================
    # Startup
    # ============================================================

    def on_mount(self) -> None:
        self._init_services()
        self._update_status()
        self._show_welcome()
        self.query_one("#user-input", Input).focus()

    def _show_welcome(self):
        self._log(Text.from_markup(
            "\n[bold #58a6ff]latex[/bold #58a6ff][bold #f0f6fc] master[/bold #f0f6fc]\n"
        ))
        self._log(Text.from_markup(
            f"[#8b949e]{get_model_name(model_config.model_id)}[/#8b949e]  "
            f"[#6e7681]dir: {rich_escape(self.working_directory)}  "
            f"limit: {app_config.iteration_cap} operations  {get_credentials_info()}[/#6e7681]"
        ))
        self._log(Text.from_markup(
            "[#484f58]Type a task to begin  ·  /help for commands  ·  Ctrl+P to pause[/#484f58]\n"
        ))

    def _init_services(self):
        """Initialize the Bedrock transport, planner client and agent"""
        try:
            service = BedrockService()
        except PlannerError as e:
            self._log(Text.from_markup(
                f"\n   [bold #f85149]✗ Failed to initialize: {rich_escape(str(e))}[/bold #f85149]"
            ))
            return
        self._planner = PlannerClient(service)
        self._agent = OperationAgent(
            planner=self._planner,
            fs=LocalFileSystem(self.working_directory),
            editor=self._editor,
        )

    # ============================================================
    # Status Bar
    # ============================================================

    def _update_status(self):
        status = self.query_one("#status-bar", Static)
        parts = [get_model_name(model_config.model_id)]
        if self._editor.current_file:
            parts.append(f"open: {self._editor.current_file}")

        state = self._agent.task_state if self._agent else None
        if self.awaiting_confirmation:
            parts.append("⏸ continue? y/n")
        elif self.is_running and state is not None:
            frame = SPINNER_FRAMES[self._spinner_idx % len(SPINNER_FRAMES)]
            elapsed = ""
            if self._task_start_time:
                elapsed = f" {int(time.time() - self._task_start_time)}s"
            parts.append(f"{frame}{elapsed} · {state.iteration_count}/{state.iteration_cap}")
            if state.paused:
                parts.append("pausing…")

        status.update(" · ".join(parts))

    def _start_spinner(self):
        self._spinner_idx = 0
        self._task_start_time = time.time()
        self._spinner_timer = self.set_interval(0.1, self._tick_spinner)

    def _stop_spinner(self):
        if self._spinner_timer:
            self._spinner_timer.stop()
            self._spinner_timer = None
        self._task_start_time = None

    def _tick_spinner(self):
        self._spinner_idx += 1
        self._update_status()

    # ============================================================
    # Input Handling
    # ============================================================

    @on(Input.Submitted, "#user-input")
    async def on_input_submitted(self, event: Input.Submitted) -> None:
        text = event.value.strip()
        input_widget = self.query_one("#user-input", Input)
        input_widget.value = ""

        # Operator decision for the iteration governor; empty Enter means "continue"
        if self.awaiting_confirmation and self._confirm_future:
            response = text.lower()
            if response in ("y", "yes", "continue", "c", ""):
                self._resolve_confirmation(True)
            elif response in ("n", "no", "stop", "s"):
                self._resolve_confirmation(False)
            else:
                self._log(Text.from_markup("   [#e3b341]Type 'yes' to continue or 'no' to stop[/#e3b341]"))
            return

        if not text:
            return

        if text.startswith("/"):
            await self._handle_command(text)
            return

        if self.is_running:
            self._log(Text("   Agent is busy. Ctrl+P to pause", style="italic #e3b341"))
            return

        self._run_task(text)

    async def _handle_command(self, command: str):
        parts = command.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        if cmd == "/help":
            tbl = Table.grid(padding=(0, 2))
            tbl.add_column(style="bold #58a6ff")
            tbl.add_column(style="#8b949e")
            tbl.add_row("/help", "Show this help")
            tbl.add_row("/open <path>", "Set the file the editor has open")
            tbl.add_row("/close", "Clear the open file")
            tbl.add_row("/tasks", "List stored task reports")
            tbl.add_row("/task <id>", "Show one stored report")
            tbl.add_row("/clear", "Clear the screen")
            tbl.add_row("/quit", "Exit")
            tbl.add_row("", "")
            tbl.add_row("Ctrl+P", "Pause after the current operation")
            tbl.add_row("Ctrl+C", "Stop / Quit")
            self._log(Text(""))
            self._log(tbl)
            self._log(Text(""))

        elif cmd == "/open":
            if not arg:
                self._log(Text("   Usage: /open <path>", style="#e3b341"))
                return
            path = normalize_path(arg)
            if self._agent and not self._agent.fs.exists(path):
                self._log(Text(f"   No such file: {path}", style="#f85149"))
                return
            self._editor.current_file = path
            self._log(Text(f"   ✓ Open file: {path}", style="#3fb950"))
            self._update_status()

        elif cmd == "/close":
            self._editor.current_file = None
            self._log(Text("   ✓ No file open", style="#3fb950"))
            self._update_status()

        elif cmd == "/tasks":
            records = self._store.list_tasks()
            if not records:
                self._log(Text("   No stored tasks for this project.", style="#6e7681"))
                return
            tbl = Table.grid(padding=(0, 2))
            tbl.add_column(style="bold #58a6ff")
            tbl.add_column(style="#8b949e")
            tbl.add_column(style="#6e7681")
            tbl.add_column(style="#c9d1d9")
            for record in records[:20]:
                tbl.add_row(record.task_id, record.state, f"{record.operation_count} ops", record.task[:60])
            self._log(Text(""))
            self._log(tbl)

        elif cmd == "/task":
            record = self._store.load(arg) if arg else None
            if record is None:
                self._log(Text(f"   No stored task: {arg or '<missing id>'}", style="#f85149"))
                return
            self._log(Text(f"\n   {record.task}", style="bold #c9d1d9"))
            self._log(Text(f"   {record.summary}", style="#8b949e"))
            lines = []
            for entry in record.report.get("history", []):
                op = entry["operation"]
                res = entry["result"]
                name = op.get("action") or op.get("type")
                lines.append(f"#{entry['sequence_number']} {name} {'ok' if res['success'] else res['error']}")
            if lines:
                self._log_collapsible(f"{len(lines)} operations", "\n".join(lines))

        elif cmd == "/clear":
            self._clear_output()

        elif cmd in ("/quit", "/exit"):
            self.exit()

        else:
            self._log(Text(f"   Unknown command: {cmd}", style="#e3b341"))

    # ============================================================
    # Agent Execution
    # ============================================================

    @work(thread=False)
    async def _run_task(self, task: str) -> None:
        if not self._agent:
            self._log(Text.from_markup(
                "   [bold #f85149]✗ Agent not initialized. Check AWS credentials.[/bold #f85149]"
            ))
            return

        self._log(Text(""))
        self._log(Text.from_markup(f"[bold #f0f6fc]❯ [/bold #f0f6fc][#c9d1d9]{rich_escape(task)}[/#c9d1d9]"))

        self.is_running = True
        self._start_spinner()
        self._update_status()

        report: Optional[TaskReport] = None
        try:
            report = await self._agent.run(
                task=task,
                on_event=self._handle_agent_event,
                confirm=self._handle_confirmation_request,
            )
        except AgentBusyError as e:
            self._log(Text(f"   {e}", style="italic #e3b341"))
        except Exception as e:
            logger.exception("Agent task error")
            self._log(Text.from_markup(f"\n   [bold #f85149]✗ {rich_escape(str(e))}[/bold #f85149]"))
        finally:
            self.is_running = False
            self.awaiting_confirmation = False
            self._stop_spinner()
            self._update_status()

        if report is not None:
            try:
                path = self._store.save(report)
                self._log(Text(f"   report saved: {path}", style="#484f58"))
            except OSError as e:
                logger.warning(f"Could not save task report: {e}")
        self.query_one("#user-input", Input).focus()

    async def _handle_agent_event(self, event: AgentEvent) -> None:
        if event.type == "text":
            self._current_text += event.content
            if self._text_widget is None:
                scroll = self.query_one("#output-scroll", VerticalScroll)
                self._text_widget = Static("", classes="text-stream", id=self._next_id("text"))
                scroll.mount(self._text_widget)
            self._text_widget.update(Text(self._current_text))
            self.query_one("#output-scroll", VerticalScroll).scroll_end(animate=False)

        elif event.type == "text_reset":
            self._drop_stream()

        elif event.type == "operation_start":
            # The streamed JSON has served its purpose once the operation is parsed
            self._drop_stream()
            action = (event.data or {}).get("action", "")
            icon = OPERATION_ICONS.get(action, "• ")
            self._log(Text.from_markup(f"   [#8b949e]{icon}{rich_escape(event.content)}[/#8b949e]"))
            self._update_status()

        elif event.type == "operation_result":
            result = (event.data or {}).get("result", {})
            duration = result.get("duration_ms", 0)
            if result.get("success"):
                self._log(Text.from_markup(f"     [#3fb950]✓[/#3fb950] [#484f58]{duration}ms[/#484f58]"))
                payload = result.get("payload") or {}
                preview = payload.get("structure") or payload.get("content")
                if isinstance(preview, str) and preview:
                    if len(preview) > COLLAPSE_CHAR_THRESHOLD:
                        self._log_collapsible(f"{len(preview)} chars", preview)
                    else:
                        self._log(Text(preview, style="#586e75"))
            else:
                self._log(Text.from_markup(
                    f"     [#f85149]✗ {rich_escape(result.get('error') or 'failed')}[/#f85149] "
                    f"[#484f58]{duration}ms[/#484f58]"
                ))

        elif event.type == "confirm":
            self._log(Text.from_markup(f"\n   [bold #e3b341]⏸ {rich_escape(event.content)}[/bold #e3b341]"))
            self._log(Text.from_markup("   [#6e7681]Enter/yes to continue · no to stop[/#6e7681]"))

        elif event.type == "done":
            self._drop_stream()
            report = event.data or {}
            color = "#3fb950" if report.get("state") == "completed" else (
                "#e3b341" if report.get("state") == "stopped" else "#f85149"
            )
            self._log(Text(""))
            for line in event.content.splitlines():
                self._log(Text.from_markup(f"   [{color}]{rich_escape(line)}[/{color}]"))
            if self._task_start_time:
                secs = round(time.time() - self._task_start_time, 1)
                self._log(Text.from_markup(f"   [#484f58]{secs}s[/#484f58]"))

    # ============================================================
    # Operator confirmation
    # ============================================================

    async def _handle_confirmation_request(self, message: str) -> bool:
        """Block the loop until the operator answers on the input line."""
        loop = asyncio.get_running_loop()
        self._confirm_future = loop.create_future()
        self.awaiting_confirmation = True
        input_widget = self.query_one("#user-input", Input)
        input_widget.placeholder = " continue? yes / no"
        self._update_status()
        input_widget.focus()
        try:
            return await self._confirm_future
        finally:
            self._confirm_future = None
            self.awaiting_confirmation = False
            input_widget.placeholder = PROMPT_PLACEHOLDER
            self._update_status()

    def _resolve_confirmation(self, answer: bool) -> None:
        if self._confirm_future and not self._confirm_future.done():
            self._confirm_future.set_result(answer)

    # ============================================================
    # Actions
    # ============================================================

    def action_cancel_or_quit(self) -> None:
        if self.awaiting_confirmation:
            self._resolve_confirmation(False)
        elif self.is_running and self._agent:
            self._agent.pause()
            self._log(Text.from_markup("   [italic #e3b341]stopping after the current operation…[/italic #e3b341]"))
        else:
            self.exit()

    def action_pause(self) -> None:
        if self.is_running and self._agent:
            self._agent.pause()
            self._log(Text.from_markup("   [italic #e3b341]pausing at the next turn…[/italic #e3b341]"))
            self._update_status()

    def action_clear_screen(self) -> None:
        self._clear_output()


# ============================================================
# Entry Point
# ============================================================

def main():
    parser = argparse.ArgumentParser(
        description="LaTeX Master - single-operation LaTeX agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                    Run in current directory
  python main.py -d ~/thesis        Run in a specific LaTeX project
  python main.py --no-stream        Disable streaming of planner output
        """,
    )
    parser.add_argument(
        "-d", "--directory",
        default=app_config.working_directory,
        help="LaTeX project directory (default: current directory)",
    )
    parser.add_argument(
        "--no-stream",
        action="store_true",
        help="Disable streaming of planner output",
    )
    parser.add_argument(
        "--tools",
        action="store_true",
        help="Negotiate each operation as a tool call instead of JSON text",
    )

    args = parser.parse_args()

    if args.no_stream:
        app_config.enable_streaming = False
    if args.tools:
        app_config.tool_negotiation = True

    working_dir = os.path.abspath(args.directory)
    if not os.path.isdir(working_dir):
        print(f"Error: {working_dir} is not a directory")
        sys.exit(1)

    app = LatexMasterApp(working_directory=working_dir)
    app.run()


if __name__ == "__main__":
    main()
