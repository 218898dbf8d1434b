from __future__ import annotations

import json

from opsagent.agent.healer import Healer
from opsagent.agent.models import Attempt, Directive, RetryState, RiskLevel, Transcript
from opsagent.agent.retry import MAX_RETRIES, RetryEngine, failure_summary
from opsagent.llm.errors import NetworkError, ProviderInitError
from opsagent.llm.offline import OfflineBackend
from opsagent.llm.router import Engine, RouterCore
from opsagent.packages import PackageManager
from opsagent.persistence import MemoryQuotaStore
from opsagent.safety import RiskGate
from opsagent.shell import CommandResult


def _directive(command: str, *, risk: str = "INFO", **extra) -> str:
    payload = {"command": command, "explanation": f"run {command}", "risk_level": risk}
    payload.update(extra)
    return json.dumps(payload)


class FakeRouter:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.prompts: list[str] = []
        self.routing: list[str | None] = []

    def generate_with_fallback(
        self, context, query, explicit_preference=None, *, routing_query=None
    ) -> str:
        self.prompts.append(query)
        self.routing.append(routing_query)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


class FakeExecutor:
    def __init__(self, *results: tuple[int, str, str]) -> None:
        self.results = list(results)
        self.commands: list[str] = []

    def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        returncode, stdout, stderr = (
            self.results.pop(0) if len(self.results) > 1 else self.results[0]
        )
        return CommandResult(command, "fake", returncode, stdout, stderr)


class FakeLog:
    def __init__(self) -> None:
        self.entries: list[tuple[Attempt, dict]] = []

    def record(self, attempt: Attempt, **fields) -> None:
        self.entries.append((attempt, fields))


def _engine(router, executor, *answers: str, log: FakeLog | None = None) -> RetryEngine:
    replies = list(answers)

    def ask(_message: str) -> str:
        if not replies:
            raise EOFError
        return replies.pop(0)

    return RetryEngine(
        router=router,
        gate=RiskGate(ask, notify=lambda _line: None),
        executor=executor,
        healer=Healer(PackageManager.APT),
        session_log=log,
        reporter=lambda _line: None,
    )


def test_success_on_first_attempt() -> None:
    log = FakeLog()
    executor = FakeExecutor((0, "Filesystem ...", ""))
    engine = _engine(FakeRouter(_directive("df -h")), executor, log=log)

    session = engine.run("check disk")

    assert session.state is RetryState.SUCCEEDED
    assert session.retry_count == 0
    assert session.pending_error is None
    assert executor.commands == ["df -h"]
    assert len(session.attempts) == 1
    assert log.entries[0][1]["query"] == "check disk"


def test_critical_command_with_lowercase_y_is_cancelled() -> None:
    log = FakeLog()
    executor = FakeExecutor((0, "", ""))
    router = FakeRouter(_directive("rm -rf /tmp/x", risk="CRITICAL"))
    engine = _engine(router, executor, "y", log=log)

    session = engine.run("clean tmp")

    assert session.state is RetryState.CANCELLED
    assert executor.commands == []
    assert session.attempts == []
    assert log.entries[0][0].cancelled is True
    assert log.entries[0][1]["risk_level"] == "CRITICAL"


def test_critical_command_with_exact_yes_executes() -> None:
    executor = FakeExecutor((0, "", ""))
    engine = _engine(FakeRouter(_directive("rm -rf /tmp/x")), executor, "YES")

    assert engine.run("clean tmp").state is RetryState.SUCCEEDED
    assert executor.commands == ["rm -rf /tmp/x"]


def test_gate_classifies_command_text_not_declared_risk() -> None:
    executor = FakeExecutor((0, "", ""))
    engine = _engine(FakeRouter(_directive("sudo reboot", risk="INFO")), executor, "n")

    assert engine.run("restart").state is RetryState.CANCELLED
    assert executor.commands == []


def test_failure_feeds_diagnosis_into_retry_prompt() -> None:
    router = FakeRouter(_directive("cargo build"), _directive("sudo apt install -y cargo"))
    executor = FakeExecutor((127, "", "sh: 1: cargo: not found"), (0, "", ""))
    engine = _engine(router, executor, "y")

    session = engine.run("build the project")

    assert session.state is RetryState.SUCCEEDED
    assert session.attempts[0].diagnosis == "sudo apt install -y cargo"
    assert session.error_tally == 1
    assert "The previous command failed with this error" in router.prompts[1]
    assert "Failed (Exit: 127)" in router.prompts[1]
    assert "(Hint: System suggests trying: 'sudo apt install -y cargo')" in router.prompts[1]


def test_at_most_three_retries_then_terminal() -> None:
    router = FakeRouter(_directive("make"))
    executor = FakeExecutor((2, "", "make: *** No targets."))
    reported: list[str] = []
    engine = _engine(router, executor)
    engine.reporter = reported.append

    session = engine.run("build")

    assert session.state is RetryState.MAX_RETRIES_REACHED
    assert len(executor.commands) == MAX_RETRIES + 1
    assert len(router.prompts) == MAX_RETRIES + 1
    assert session.retry_count == MAX_RETRIES
    assert any("Maximum retries reached" in line for line in reported)


def test_new_query_resets_retry_bookkeeping() -> None:
    engine = _engine(FakeRouter(_directive("ls")), FakeExecutor((0, "", "")))
    stale = engine.start("first")
    stale.retry_count = 2
    stale.pending_error = "Ran: x"

    fresh = engine.start("second")

    assert fresh.retry_count == 0
    assert fresh.pending_error is None
    assert fresh.state is RetryState.AWAITING_DIRECTIVE
    assert engine.next_prompt(fresh) == "second"


def test_transitions_bound_retries_without_a_terminal() -> None:
    engine = _engine(FakeRouter(_directive("ls")), FakeExecutor((0, "", "")))
    session = engine.start("q")
    failed = Attempt(command="x", stdout="", stderr="boom", exit_code=1, success=False)

    states = [engine.on_execution(session, failed) for _ in range(4)]

    assert states == [
        RetryState.RETRYING,
        RetryState.RETRYING,
        RetryState.RETRYING,
        RetryState.MAX_RETRIES_REACHED,
    ]
    assert session.error_tally == 4


def test_decline_clears_pending_error_and_retry_count() -> None:
    engine = _engine(FakeRouter(_directive("ls")), FakeExecutor((0, "", "")))
    session = engine.start("q")
    session.retry_count = 2
    session.pending_error = "Ran: x"

    assert engine.on_confirmation(session, approved=False) is RetryState.CANCELLED
    assert session.retry_count == 0
    assert session.pending_error is None


def test_next_prompt_leaves_retrying_state() -> None:
    engine = _engine(FakeRouter(_directive("ls")), FakeExecutor((0, "", "")))
    session = engine.start("q")
    engine.on_execution(
        session, Attempt(command="x", stdout="", stderr="e", exit_code=1, success=False)
    )

    prompt = engine.next_prompt(session)

    assert session.state is RetryState.AWAITING_DIRECTIVE
    assert prompt.startswith("The previous command failed with this error: Ran: x")


def test_network_error_is_reported_and_not_retried() -> None:
    router = FakeRouter(NetworkError("connection reset", engine="Google Gemini"))
    executor = FakeExecutor((0, "", ""))
    reported: list[str] = []
    engine = _engine(router, executor)
    engine.reporter = reported.append

    session = engine.run("list files")

    assert session.state is RetryState.PROVIDER_FAILED
    assert len(router.prompts) == 1
    assert executor.commands == []
    assert "Check network connectivity" in reported[-1]


def test_clarification_and_empty_command_end_without_executing() -> None:
    executor = FakeExecutor((0, "", ""))
    clarify = _engine(
        FakeRouter(_directive("", needs_clarification=True, explanation="Which host?")),
        executor,
    )
    empty = _engine(FakeRouter(_directive("")), executor)

    session = clarify.run("restart it")
    assert session.state is RetryState.CLARIFICATION_NEEDED
    assert session.message == "Which host?"
    assert empty.run("hello").state is RetryState.NO_COMMAND
    assert executor.commands == []


def test_unparseable_directive_is_terminal() -> None:
    engine = _engine(FakeRouter("sudo systemctl restart nginx"), FakeExecutor((0, "", "")))

    session = engine.run("restart nginx")

    assert session.state is RetryState.INVALID_DIRECTIVE
    assert "sudo systemctl restart nginx" in (session.message or "")


def test_transcript_carries_conversation_into_next_request() -> None:
    router = FakeRouter(_directive("uptime"))
    transcript = Transcript()
    engine = _engine(router, FakeExecutor((0, "up 3 days", "")))
    engine.transcript = transcript

    engine.run("how long has it been up")
    engine.run("and the load?")

    assert router.prompts[0] == "how long has it been up"
    assert router.prompts[1].startswith("Recent Conversation History:")
    assert "USER: how long has it been up" in router.prompts[1]
    assert "Output: up 3 days" in router.prompts[1]
    assert router.prompts[1].endswith("Current Request: and the load?")


def test_prompts_are_redacted_before_leaving_the_host() -> None:
    router = FakeRouter(_directive("ping -c1 host"))
    engine = _engine(router, FakeExecutor((0, "", "")))

    engine.run("ping 192.168.1.20")

    assert "192.168.1.20" not in router.prompts[0]
    assert "[REDACTED_IP]" in router.prompts[0]


def test_failure_summary_format() -> None:
    attempt = Attempt(
        command="cat /etc/shadow",
        stdout="",
        stderr="Permission denied\n",
        exit_code=1,
        success=False,
        diagnosis="sudo cat /etc/shadow",
    )

    assert failure_summary(attempt) == (
        "Ran: cat /etc/shadow\nFailed (Exit: 1)\nError: Permission denied\n"
        "(Hint: System suggests trying: 'sudo cat /etc/shadow')"
    )


def test_directive_risk_level_is_parsed() -> None:
    engine = _engine(FakeRouter(_directive("ls")), FakeExecutor((0, "", "")))
    session = engine.start("q")

    engine.on_directive(session, Directive(command="ls", explanation="", risk_level=RiskLevel.INFO))

    assert session.state is RetryState.AWAITING_CONFIRMATION


class RecordingBackend:
    def __init__(self, engine: Engine, chosen: list[Engine]) -> None:
        self.engine = engine
        self.chosen = chosen
        self.name = engine.value

    def generate(self, context, prompt: str) -> str:
        self.chosen.append(self.engine)
        return _directive("ls")


def test_engine_is_chosen_from_the_request_not_the_history() -> None:
    chosen: list[Engine] = []
    router = RouterCore(
        lambda engine: RecordingBackend(engine, chosen),
        MemoryQuotaStore(),
        analysis=Engine.CLAUDE,
        long_query=Engine.OPENAI,
    )
    engine = _engine(router, FakeExecutor((0, "x" * 500, "")))

    for query in ("why is the disk full", "list files", "show uptime", "y" * 1001):
        engine.run(query)

    assert chosen == [Engine.CLAUDE, Engine.GEMINI, Engine.GEMINI, Engine.OPENAI]


def test_router_receives_the_raw_request_for_routing() -> None:
    router = FakeRouter(_directive("ls"))
    engine = _engine(router, FakeExecutor((0, "", "")))

    engine.run("first")
    engine.run("ping 10.0.0.1")

    assert router.routing == ["first", "ping 10.0.0.1"]
    assert router.prompts[1].startswith("Recent Conversation History:")


def test_offline_engine_answers_each_request_on_its_own() -> None:
    def factory(engine: Engine):
        if engine is Engine.OFFLINE:
            return OfflineBackend()
        raise ProviderInitError("no credentials", engine=engine.value)

    router = RouterCore(factory, MemoryQuotaStore(), fallback=Engine.OFFLINE)
    executor = FakeExecutor((0, "", ""))
    engine = _engine(router, executor)

    engine.run("check disk space")
    engine.run("show memory usage")

    assert executor.commands == ["df -h", "free -h"]
