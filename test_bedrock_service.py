"""
Tests for the Bedrock transport: error classification, request bodies, response parsing.
"""

import io
import json
import threading

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError

from bedrock_service import (
    BedrockService,
    GenerationConfig,
    PlannerError,
    classify_error,
    is_retryable,
)


def _client_error(code, status):
    return ClientError(
        {"Error": {"Code": code, "Message": "details"}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "InvokeModel",
    )


class FakeBedrockClient:
    def __init__(self, body=None, events=None, error=None):
        self.body = body
        self.events = events or []
        self.error = error
        self.requests = []

    def invoke_model(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return {"body": io.BytesIO(json.dumps(self.body).encode())}

    def invoke_model_with_response_stream(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return {"body": list(self.events)}


def _chunk(payload):
    return {"chunk": {"bytes": json.dumps(payload).encode()}}


def _delta(text):
    return _chunk({"type": "content_block_delta", "delta": {"type": "text_delta", "text": text}})


# ============================================================
# Error classification
# ============================================================

def test_is_retryable():
    assert is_retryable(status=503)
    assert is_retryable(status=429)
    assert is_retryable(code="ThrottlingException")
    assert is_retryable(code="overloaded_error")
    assert not is_retryable(status=400, code="ValidationException")
    assert not is_retryable()


def test_throttling_is_retryable():
    error = classify_error(_client_error("ThrottlingException", 429))
    assert error.retryable
    assert error.status == 429
    assert error.code == "ThrottlingException"


def test_validation_is_final():
    error = classify_error(_client_error("ValidationException", 400))
    assert not error.retryable


def test_expired_credentials_are_final():
    error = classify_error(_client_error("ExpiredTokenException", 403))
    assert not error.retryable
    assert "credentials" in str(error)


def test_missing_credentials_are_final():
    assert not classify_error(NoCredentialsError()).retryable


def test_connection_failures_are_retryable():
    error = classify_error(EndpointConnectionError(endpoint_url="https://bedrock"))
    assert error.retryable
    assert error.code == "timeout"


def test_unexpected_exception_is_final():
    assert not classify_error(RuntimeError("bug")).retryable


# ============================================================
# Requests and responses
# ============================================================

def test_request_body_with_catalog_forces_single_tool_call():
    service = BedrockService(client=FakeBedrockClient())
    body = service._format_request_body(
        [{"role": "user", "content": "hi"}],
        "system",
        GenerationConfig(max_tokens=100, temperature=0.2),
        tools=[{"name": "read_file"}],
    )
    assert body["system"] == "system"
    assert body["max_tokens"] == 100
    assert body["temperature"] == 0.2
    assert body["tool_choice"] == {"type": "any", "disable_parallel_tool_use": True}


def test_generate_parses_text_and_usage():
    client = FakeBedrockClient(body={
        "content": [{"type": "text", "text": "```json\n{}\n```"}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 12, "output_tokens": 3},
    })
    response = BedrockService(client=client).generate([{"role": "user", "content": "hi"}])
    assert response.kind == "text"
    assert response.text == "```json\n{}\n```"
    assert response.input_tokens == 12
    assert len(client.requests) == 1


def test_generate_parses_first_tool_call():
    client = FakeBedrockClient(body={
        "content": [
            {"type": "text", "text": "Looking at the layout"},
            {"type": "tool_use", "id": "t1", "name": "get_file_structure", "input": {}},
            {"type": "tool_use", "id": "t2", "name": "read_file", "input": {"file_path": "/a.tex"}},
        ],
        "stop_reason": "tool_use",
    })
    response = BedrockService(client=client).generate([{"role": "user", "content": "hi"}])
    assert response.is_operation
    assert response.tool_name == "get_file_structure"
    assert response.text == "Looking at the layout"


def test_generate_classifies_client_errors():
    client = FakeBedrockClient(error=_client_error("ServiceUnavailableException", 503))
    with pytest.raises(PlannerError) as info:
        BedrockService(client=client).generate([{"role": "user", "content": "hi"}])
    assert info.value.retryable


def test_stream_yields_text_deltas_until_stop():
    client = FakeBedrockClient(events=[
        _chunk({"type": "message_start"}),
        _delta("\\section"),
        _delta("{A}"),
        _chunk({"type": "message_stop"}),
        _delta("ignored"),
    ])
    deltas = list(BedrockService(client=client).generate_stream([{"role": "user", "content": "hi"}]))
    assert deltas == ["\\section", "{A}"]


def test_stream_exception_event_is_classified():
    client = FakeBedrockClient(events=[
        _delta("partial"),
        {"throttlingException": {"message": "slow down"}},
    ])
    stream = BedrockService(client=client).generate_stream([{"role": "user", "content": "hi"}])
    assert next(stream) == "partial"
    with pytest.raises(PlannerError) as info:
        next(stream)
    assert info.value.retryable
    assert info.value.code == "ThrottlingException"


def test_stream_stops_when_cancelled():
    cancel = threading.Event()
    cancel.set()
    client = FakeBedrockClient(events=[_delta("never")])
    deltas = list(BedrockService(client=client).generate_stream(
        [{"role": "user", "content": "hi"}], cancel_event=cancel
    ))
    assert deltas == []
