from __future__ import annotations

import json
import sys
from pathlib import Path
from types import SimpleNamespace

import httpx
import openai
import pytest
import requests

from gated_orchestrator.orchestrator.config import OrchestratorSettings
from gated_orchestrator.orchestrator.errors import ProtocolError, WorkerError, WorkerTimeoutError
from gated_orchestrator.workers.command_transport import CommandWorkerTransport, render_stdin
from gated_orchestrator.workers.factory import WorkerTransportFactory, create_worker_client
from gated_orchestrator.workers.http_transport import HttpWorkerTransport
from gated_orchestrator.workers.openai_transport import OpenAIWorkerTransport
from gated_orchestrator.workers.payloads import decode_json_reply, unwrap_result_envelope
from gated_orchestrator.workers.protocol import DelegationRequest, WorkerType

REQUEST = DelegationRequest(
    worker_type=WorkerType.QUALITY_CHECKER,
    description="Quality check changed files",
    prompt="Run the checks.",
    inputs={"filesModified": ["src/app.py"]},
)


def _python(code: str) -> list[str]:
    return [sys.executable, "-c", code]


# -- payload decoding ---------------------------------------------------------


def test_decode_strips_code_fence() -> None:
    assert decode_json_reply('```json\n{"approved": true}\n```', source="w") == {"approved": True}


@pytest.mark.parametrize("text", ["", "   ", "not json", "{"])
def test_decode_rejects_non_json(text: str) -> None:
    with pytest.raises(ProtocolError):
        decode_json_reply(text, source="w")


def test_unwrap_result_envelope() -> None:
    assert unwrap_result_envelope({"result": '{"approved": false}'}, source="w") == {
        "approved": False
    }
    assert unwrap_result_envelope({"result": "quota exceeded", "is_error": True}, source="w") == {
        "error": "quota exceeded"
    }
    assert unwrap_result_envelope({"approved": True}, source="w") == {"approved": True}


# -- command transport --------------------------------------------------------


def test_render_stdin_carries_payload_and_schema() -> None:
    text = render_stdin(REQUEST)

    assert text.startswith("Run the checks.")
    assert '"workerType": "quality-checker"' in text
    assert '"approved"' in text


def test_command_transport_reads_stdout_json() -> None:
    code = (
        "import json, sys\n"
        "text = sys.stdin.read()\n"
        "print(json.dumps({'approved': 'quality-checker' in text}))\n"
    )
    transport = CommandWorkerTransport(_python(code), timeout_seconds=30)

    assert transport.send(REQUEST) == {"approved": True}


def test_command_transport_unwraps_agent_envelope() -> None:
    envelope = {"type": "result", "result": '```json\n{"approved": true}\n```'}
    code = f"import sys; sys.stdin.read(); print({json.dumps(json.dumps(envelope))})"
    transport = CommandWorkerTransport(_python(code), timeout_seconds=30)

    assert transport.send(REQUEST) == {"approved": True}


def test_command_transport_nonzero_exit_is_worker_error() -> None:
    code = "import sys; sys.stdin.read(); sys.stderr.write('boom'); sys.exit(3)"
    transport = CommandWorkerTransport(_python(code), timeout_seconds=30)

    with pytest.raises(WorkerError, match="exit code 3: boom"):
        transport.send(REQUEST)


def test_command_transport_missing_binary_is_worker_error() -> None:
    transport = CommandWorkerTransport(["gated-orchestrator-no-such-binary"])

    with pytest.raises(WorkerError, match="not found"):
        transport.send(REQUEST)


def test_command_transport_unstartable_binary_is_worker_error(tmp_path: Path) -> None:
    script = tmp_path / "agent.sh"
    script.write_text("#!/bin/sh\necho {}\n", encoding="utf-8")
    script.chmod(0o644)
    transport = CommandWorkerTransport([str(script)])

    with pytest.raises(WorkerError, match="could not be started"):
        transport.send(REQUEST)


def test_command_transport_invalid_utf8_is_protocol_error() -> None:
    code = "import sys; sys.stdin.read(); sys.stdout.buffer.write(b'\\xff{}')"
    transport = CommandWorkerTransport(_python(code), timeout_seconds=30)

    with pytest.raises(ProtocolError, match="not valid UTF-8"):
        transport.send(REQUEST)


def test_command_transport_runs_in_working_directory(tmp_path: Path) -> None:
    code = "import json, os, sys; sys.stdin.read(); print(json.dumps({'cwd': os.getcwd()}))"
    transport = CommandWorkerTransport(
        _python(code), working_directory=tmp_path, timeout_seconds=30
    )

    reply = transport.send(REQUEST)

    assert Path(reply["cwd"]).resolve() == tmp_path.resolve()  # type: ignore[index]


def test_command_transport_timeout() -> None:
    transport = CommandWorkerTransport(_python("import time; time.sleep(10)"), timeout_seconds=0.2)

    with pytest.raises(WorkerTimeoutError):
        transport.send(REQUEST)


def test_command_string_is_split_like_a_shell() -> None:
    transport = CommandWorkerTransport("claude -p --output-format 'json'")
    assert transport.argv == ["claude", "-p", "--output-format", "json"]

    with pytest.raises(ValueError):
        CommandWorkerTransport("   ")


# -- http transport -----------------------------------------------------------


def _response(status: int, body: bytes) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    resp._content = body
    resp.encoding = "utf-8"
    resp.url = "http://workers.local/workers/quality-checker"
    return resp


def test_http_transport_posts_payload(monkeypatch: pytest.MonkeyPatch) -> None:
    session = requests.Session()
    seen: dict[str, object] = {}

    def fake_post(url: str, json: object, timeout: float) -> requests.Response:
        seen.update(url=url, json=json, timeout=timeout)
        return _response(200, b'{"approved": true}')

    monkeypatch.setattr(session, "post", fake_post)
    transport = HttpWorkerTransport(
        "http://workers.local/", token="secret", timeout_seconds=12.0, session=session
    )

    assert transport.send(REQUEST) == {"approved": True}
    assert seen["url"] == "http://workers.local/workers/quality-checker"
    assert seen["json"] == REQUEST.to_payload()
    assert seen["timeout"] == 12.0
    assert session.headers["Authorization"] == "Bearer secret"


@pytest.mark.parametrize(
    ("outcome", "error"),
    [
        (requests.Timeout("slow"), WorkerTimeoutError),
        (requests.ConnectionError("refused"), WorkerError),
        (_response(500, b"internal error"), WorkerError),
        (_response(200, b"<html>"), ProtocolError),
    ],
)
def test_http_transport_errors(
    monkeypatch: pytest.MonkeyPatch, outcome: object, error: type[Exception]
) -> None:
    session = requests.Session()

    def fake_post(*_args: object, **_kwargs: object) -> object:
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(session, "post", fake_post)
    transport = HttpWorkerTransport("http://workers.local", session=session)

    with pytest.raises(error):
        transport.send(REQUEST)


# -- openai transport ---------------------------------------------------------


class _FakeCompletions:
    def __init__(self, outcome: object) -> None:
        self.outcome = outcome
        self.calls: list[dict[str, object]] = []

    def create(self, **kwargs: object) -> object:
        self.calls.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        if self.outcome is None:
            return SimpleNamespace(choices=[])
        message = SimpleNamespace(content=self.outcome)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _fake_openai(outcome: object) -> SimpleNamespace:
    return SimpleNamespace(
        chat=SimpleNamespace(completions=_FakeCompletions(outcome)), close=lambda: None
    )


def test_openai_transport_requests_json_object() -> None:
    client = _fake_openai('{"approved": true}')
    transport = OpenAIWorkerTransport(api_key="", model="gpt-4o", client=client)  # type: ignore[arg-type]

    assert transport.send(REQUEST) == {"approved": True}
    call = client.chat.completions.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["response_format"] == {"type": "json_object"}
    messages = call["messages"]
    assert "quality-checker worker" in messages[0]["content"]  # type: ignore[index]
    assert "src/app.py" in messages[1]["content"]  # type: ignore[index]


def test_openai_transport_maps_sdk_errors() -> None:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")

    timeout = OpenAIWorkerTransport(
        api_key="", model="m", client=_fake_openai(openai.APITimeoutError(request=request))  # type: ignore[arg-type]
    )
    with pytest.raises(WorkerTimeoutError):
        timeout.send(REQUEST)

    failing = OpenAIWorkerTransport(
        api_key="", model="m", client=_fake_openai(openai.APIConnectionError(request=request))  # type: ignore[arg-type]
    )
    with pytest.raises(WorkerError):
        failing.send(REQUEST)


def test_openai_transport_without_choices_is_protocol_error() -> None:
    transport = OpenAIWorkerTransport(api_key="", model="m", client=_fake_openai(None))  # type: ignore[arg-type]

    with pytest.raises(ProtocolError, match="no choices"):
        transport.send(REQUEST)


def test_openai_transport_requires_key_without_client() -> None:
    with pytest.raises(ValueError):
        OpenAIWorkerTransport(api_key="", model="gpt-4o")


# -- factory ------------------------------------------------------------------


def test_factory_selects_backend(clean_env) -> None:  # noqa: ANN001
    command = OrchestratorSettings(_env_file=None)
    assert isinstance(WorkerTransportFactory.create(command), CommandWorkerTransport)

    http = OrchestratorSettings(
        _env_file=None,
        ORCHESTRATOR_WORKER_BACKEND="http",
        ORCHESTRATOR_WORKER_URL="http://workers.local",
        ORCHESTRATOR_WORKER_TIMEOUT_SECONDS=7,
    )
    client = create_worker_client(http)
    assert client.timeout_seconds == 7
    client.close()

    ai = OrchestratorSettings(_env_file=None, ORCHESTRATOR_WORKER_BACKEND="openai", OPENAI_API_KEY="k")
    assert isinstance(WorkerTransportFactory.create(ai), OpenAIWorkerTransport)


def test_factory_bounds_command_workers_by_the_invocation_timeout(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("ORCHESTRATOR_WORKER_TIMEOUT_SECONDS", "42")
    monkeypatch.setenv("ORCHESTRATOR_REPO_ROOT", str(clean_env))

    transport = WorkerTransportFactory.create(OrchestratorSettings(_env_file=None))

    assert isinstance(transport, CommandWorkerTransport)
    assert transport.timeout_seconds == 42
    assert transport.working_directory == clean_env
