"""
End-to-end tests for OperationAgent: a scripted planner driving the real codec, executor,
context fold, duplicate guard and governor against an in-memory project.
"""

import asyncio
import json
import time

import pytest

from agent import AgentBusyError, GovernorState, OperationAgent, PlannerClient
from backend import MemoryFileSystem
from bedrock_service import PlannerError, PlannerResponse


class ScriptedService:
    """Returns one scripted planner reply per request, recording what it was sent."""

    def __init__(self, replies, delay=0.0):
        self.replies = list(replies)
        self.delay = delay
        self.calls = []

    def generate(self, messages, system_prompt=None, config=None, tools=None):
        self.calls.append({"prompt": messages[-1]["content"], "system_prompt": system_prompt, "tools": tools})
        if self.delay:
            time.sleep(self.delay)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    def generate_stream(self, messages, system_prompt=None, config=None, cancel_event=None):
        self.calls.append({"prompt": messages[-1]["content"], "system_prompt": system_prompt, "stream": True})
        reply = self.replies.pop(0)
        text = reply.text
        for i in range(0, len(text), 16):
            yield text[i:i + 16]


def op(obj):
    return PlannerResponse(kind="text", text="```json\n" + json.dumps(obj) + "\n```")


def read(action, **parameters):
    return op({"type": "read", "action": action, "parameters": parameters, "reasoning": "need it"})


def write(action, **parameters):
    return op({"type": "write", "action": action, "parameters": parameters, "reasoning": "change it"})


def complete(message="Done"):
    return op({"type": "complete", "message": message})


def _project():
    return MemoryFileSystem({
        "/main.tex": "\\documentclass{article}\n\\begin{document}\nHello\n\\end{document}\n",
        "/chapters/intro.tex": "\\section{Introduction}\n",
    })


def _agent(replies, fs=None, streaming=False, negotiation=False, delay=0.0, **kwargs):
    service = ScriptedService(replies, delay=delay)

    async def _no_sleep(seconds):
        return None

    planner = PlannerClient(
        service,
        timeout=5.0,
        max_retries=2,
        enable_streaming=streaming,
        tool_negotiation=negotiation,
        sleep=_no_sleep,
    )
    kwargs.setdefault("iteration_cap", 20)
    kwargs.setdefault("iteration_increment", 10)
    kwargs.setdefault("duplicate_window", 3)
    agent = OperationAgent(planner, fs if fs is not None else _project(), **kwargs)
    return agent, service


def _collect():
    events = []

    async def _on_event(event):
        events.append(event)

    return events, _on_event


# ============================================================
# Completion
# ============================================================

def test_read_then_edit_then_complete():
    new_main = "\\documentclass{article}\n\\begin{document}\nHello, world\n\\end{document}\n"
    fs = _project()
    agent, service = _agent([
        read("get_file_structure"),
        read("read_file", file_path="/main.tex"),
        write("edit_file", file_path="/main.tex", content=new_main),
        complete("Greeting updated"),
    ], fs=fs)
    events, on_event = _collect()

    report = asyncio.run(agent.run("Change the greeting", on_event=on_event))

    assert report.state == GovernorState.COMPLETED
    assert report.reason == "completed"
    assert report.message == "Greeting updated"
    assert (report.total_operations, report.read_operations, report.write_operations) == (3, 2, 1)
    assert len(report.history) == 4
    assert fs.read_file("/main.tex") == new_main
    assert not agent.is_executing

    types = [e.type for e in events]
    assert types[0] == "task_start"
    assert types[-1] == "done"
    assert types.count("operation_start") == 3
    assert types.count("operation_result") == 3


def test_context_is_fed_back_to_the_planner():
    agent, service = _agent([
        read("get_file_structure"),
        read("read_file", file_path="/main.tex"),
        complete(),
    ])
    asyncio.run(agent.run("Summarize main.tex"))

    first, second, third = (c["prompt"] for c in service.calls)
    assert "KNOWN STRUCTURE" not in first
    assert "KNOWN STRUCTURE" in second
    assert "intro.tex (LaTeX)" in second
    assert "--- /main.tex ---" in third
    assert "#1 read get_file_structure() -> ok" in third


def test_failed_operation_is_reported_to_the_planner():
    agent, service = _agent([
        read("read_file", file_path="/missing.tex"),
        complete("Nothing to do"),
    ])
    report = asyncio.run(agent.run("Read missing.tex"))

    assert report.succeeded
    assert report.failed_operations == 1
    assert "FAILED" in service.calls[1]["prompt"]
    assert "The last operation failed" in service.calls[1]["prompt"]


def test_non_text_content_is_a_recoverable_failure():
    fs = _project()
    original = fs.read_file("/main.tex")
    agent, service = _agent([
        write("edit_file", file_path="/main.tex", content=["\\section{A}"]),
        complete("Gave up on the edit"),
    ], fs=fs)
    report = asyncio.run(agent.run("Add a section"))

    assert report.succeeded
    assert report.failed_operations == 1
    assert fs.read_file("/main.tex") == original
    assert "FAILED" in service.calls[1]["prompt"]


def test_read_after_write_of_same_path_is_allowed():
    fs = _project()
    agent, _ = _agent([
        write("create_file", file_path="/abstract.tex", content="\\begin{abstract}\nShort.\n\\end{abstract}\n"),
        read("read_file", file_path="/abstract.tex"),
        complete(),
    ], fs=fs)
    report = asyncio.run(agent.run("Add an abstract"))

    assert report.succeeded
    assert fs.read_file("/abstract.tex").startswith("\\begin{abstract}")
    assert report.history[1].result.success


def test_tasks_do_not_share_context():
    agent, service = _agent([
        read("get_file_structure"),
        complete(),
        read("get_file_structure"),
        complete(),
    ])
    first = asyncio.run(agent.run("first"))
    second = asyncio.run(agent.run("second"))

    assert first.task_id != second.task_id
    assert second.succeeded
    assert "KNOWN STRUCTURE" not in service.calls[2]["prompt"]


# ============================================================
# Task-fatal errors
# ============================================================

def test_repeated_operation_aborts_the_task():
    agent, _ = _agent([
        read("get_file_structure"),
        read("get_file_structure"),
    ])
    report = asyncio.run(agent.run("Look around"))

    assert report.state == GovernorState.ABORTED
    assert report.reason == "duplicate_operation"
    assert len(report.history) == 1
    assert "get_file_structure" in report.error


def test_write_action_under_read_type_aborts_without_touching_files():
    fs = _project()
    agent, _ = _agent([
        op({"type": "read", "action": "create_file", "parameters": {"file_path": "/x.tex", "content": "x"}}),
    ], fs=fs)
    report = asyncio.run(agent.run("Sneak a write"))

    assert report.reason == "capability_violation"
    assert report.state == GovernorState.ABORTED
    assert not fs.exists("/x.tex")
    assert report.history == []


def test_action_outside_the_catalog_aborts():
    agent, _ = _agent([read("compile_pdf")])
    report = asyncio.run(agent.run("Build it"))
    assert report.reason == "unknown_operation"


def test_unparseable_reply_aborts_with_excerpt():
    agent, _ = _agent([PlannerResponse(kind="text", text="I would rather chat about LaTeX.")])
    report = asyncio.run(agent.run("Do something"))

    assert report.reason == "protocol_error"
    assert "I would rather chat" in report.error


def test_final_planner_error_aborts():
    agent, service = _agent([PlannerError("bad request", status=400, code="ValidationException")])
    report = asyncio.run(agent.run("Anything"))

    assert report.reason == "planner_error"
    assert report.state == GovernorState.ABORTED
    assert len(service.calls) == 1


def test_transient_planner_error_is_retried():
    agent, service = _agent([
        PlannerError("throttled", status=429, code="ThrottlingException", retryable=True),
        complete(),
    ])
    report = asyncio.run(agent.run("Anything"))
    assert report.succeeded
    assert len(service.calls) == 2


# ============================================================
# Governor, pause, busy
# ============================================================

def _five_reads():
    fs = MemoryFileSystem({f"/f{i}.tex": f"file {i}" for i in range(1, 6)})
    replies = [read("read_file", file_path=f"/f{i}.tex") for i in range(1, 6)]
    return fs, replies


def test_sixth_turn_past_cap_of_five_asks_operator():
    fs, replies = _five_reads()
    agent, _ = _agent(replies + [complete()], fs=fs, iteration_cap=5, iteration_increment=10)
    asked = []
    events, on_event = _collect()

    async def _confirm(message):
        asked.append(message)
        return True

    report = asyncio.run(agent.run("Read everything", on_event=on_event, confirm=_confirm))

    assert asked == ["I've completed 5 operations (limit 5). Continue for up to 10 more?"]
    assert "confirm" in [e.type for e in events]
    assert report.succeeded
    assert report.total_operations == 5
    assert report.iteration_count == 6


def test_operator_declining_stops_the_task():
    fs, replies = _five_reads()
    agent, service = _agent(replies + [complete()], fs=fs, iteration_cap=5)

    async def _confirm(message):
        return False

    report = asyncio.run(agent.run("Read everything", confirm=_confirm))

    assert report.state == GovernorState.STOPPED
    assert report.reason == "iteration_limit"
    assert report.total_operations == 5
    assert len(service.calls) == 5


def test_without_operator_the_cap_is_final():
    fs, replies = _five_reads()
    agent, service = _agent(replies + [complete()], fs=fs, iteration_cap=5)
    report = asyncio.run(agent.run("Read everything"))

    assert report.reason == "iteration_limit"
    assert report.message == "Stopped after 5 operations"


def test_pause_is_honoured_before_the_next_turn():
    agent, service = _agent([
        read("get_file_structure"),
        read("read_file", file_path="/main.tex"),
        complete(),
    ])

    async def _on_event(event):
        if event.type == "operation_result":
            agent.pause()

    report = asyncio.run(agent.run("Look around", on_event=_on_event))

    assert report.state == GovernorState.STOPPED
    assert report.reason == "paused"
    assert report.total_operations == 1
    assert len(service.calls) == 1


def test_pause_cancels_a_slow_planner_request():
    agent, service = _agent([read("get_file_structure")], delay=0.5)

    async def _run():
        start = time.monotonic()
        task = asyncio.ensure_future(agent.run("Look around"))
        await asyncio.sleep(0.05)
        agent.pause()
        report = await task
        return report, time.monotonic() - start

    report, elapsed = asyncio.run(_run())

    assert report.state == GovernorState.STOPPED
    assert report.reason == "paused"
    assert report.history == []
    assert elapsed < 0.4
    assert len(service.calls) == 1
    assert not agent.is_executing


def test_second_task_while_executing_is_rejected():
    agent, _ = _agent([complete(), complete()], delay=0.2)

    async def _run():
        first = asyncio.ensure_future(agent.run("first"))
        await asyncio.sleep(0.05)
        assert agent.is_executing
        with pytest.raises(AgentBusyError):
            await agent.run("second")
        return await first

    report = asyncio.run(_run())
    assert report.succeeded
    assert not agent.is_executing


# ============================================================
# Streaming and negotiation
# ============================================================

def test_streamed_reply_is_forwarded_as_text_events():
    agent, service = _agent([complete("Streamed")], streaming=True)
    events, on_event = _collect()
    report = asyncio.run(agent.run("Finish", on_event=on_event))

    text = "".join(e.content for e in events if e.type == "text")
    assert report.message == "Streamed"
    assert '"type": "complete"' in text
    assert service.calls[0].get("stream")


def test_negotiated_operations_drive_the_loop():
    fs = _project()
    agent, service = _agent([
        PlannerResponse(kind="operation", tool_name="list_files", tool_input={"directory_path": "/chapters"}),
        PlannerResponse(kind="operation", tool_name="create_file",
                        tool_input={"file_path": "/chapters/method.tex", "content": "\\section{Method}\n"}),
        PlannerResponse(kind="operation", tool_name="complete", tool_input={"message": "Added a chapter"}),
    ], fs=fs, negotiation=True)
    report = asyncio.run(agent.run("Add a method chapter"))

    assert report.succeeded
    assert report.message == "Added a chapter"
    assert fs.read_file("/chapters/method.tex") == "\\section{Method}\n"
    assert service.calls[0]["tools"] is not None
    assert "<operation_protocol>" in service.calls[0]["system_prompt"]
