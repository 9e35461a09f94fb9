"""
Amazon Bedrock service module.
Planner transport: one request per call, either a whole response (invoke_model) or a
stream of text deltas (invoke_model_with_response_stream). Retry policy is not applied
here; every failure is classified into a PlannerError and handed to the caller.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    HTTPClientError,
    NoCredentialsError,
    PartialCredentialsError,
)
from dotenv import load_dotenv

from config import (
    app_config,
    aws_config,
    model_config,
    get_max_output_tokens,
    get_model_config,
    requires_inference_profile,
)

logger = logging.getLogger(__name__)
env_path = '.env'

ANTHROPIC_VERSION = "bedrock-2023-05-31"

# Bedrock error codes worth another attempt
RETRYABLE_ERROR_CODES = frozenset({
    "ThrottlingException",
    "TooManyRequestsException",
    "ServiceUnavailableException",
    "InternalServerException",
    "ModelTimeoutException",
    "ModelNotReadyException",
    "ModelStreamErrorException",
})

# Error type names reported inside response bodies / stream events
TRANSIENT_ERROR_TYPES = frozenset({
    "server_error",
    "timeout",
    "rate_limit_exceeded",
    "service_unavailable",
    "overloaded_error",
    "api_error",
})

# Exception events the response stream can deliver instead of a chunk
_STREAM_EXCEPTION_CODES = {
    "internalServerException": "InternalServerException",
    "modelStreamErrorException": "ModelStreamErrorException",
    "throttlingException": "ThrottlingException",
    "validationException": "ValidationException",
    "modelTimeoutException": "ModelTimeoutException",
    "serviceUnavailableException": "ServiceUnavailableException",
}


class PlannerError(Exception):
    """Transport failure talking to the planner endpoint"""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        code: Optional[str] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.status = status
        self.code = code
        self.retryable = retryable


def is_retryable(status: Optional[int] = None, code: Optional[str] = None) -> bool:
    """Server-class errors, rate limits and declared transient codes are retryable."""
    if status is not None and (status >= 500 or status == 429):
        return True
    if code and (code in RETRYABLE_ERROR_CODES or code in TRANSIENT_ERROR_TYPES):
        return True
    return False


def classify_error(exc: BaseException) -> PlannerError:
    """Turn any transport exception into a PlannerError with a retryable verdict."""
    if isinstance(exc, PlannerError):
        return exc
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code", "Unknown")
        message = error.get("Message", str(exc))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in ("ExpiredTokenException", "InvalidSignatureException", "UnrecognizedClientException"):
            return PlannerError("AWS credentials expired or invalid. Please refresh.", status, code, False)
        return PlannerError(f"Bedrock API error: {code} - {message}", status, code, is_retryable(status, code))
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return PlannerError("AWS credentials not configured.", code="NoCredentials", retryable=False)
    if isinstance(exc, (HTTPClientError, BotoConnectionError)):
        # Connection refused/reset, read and connect timeouts
        return PlannerError(f"Connection error: {exc}", code="timeout", retryable=True)
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return PlannerError(f"Connection error: {exc}", code="timeout", retryable=True)
    if isinstance(exc, BotoCoreError):
        return PlannerError(f"Bedrock client error: {exc}", retryable=False)
    return PlannerError(f"Unexpected planner error: {exc}", retryable=False)


@dataclass
class GenerationConfig:
    """Configuration for a single generation request"""
    max_tokens: int = 4000
    temperature: Optional[float] = None
    stop_sequences: Optional[List[str]] = None
    throughput_mode: str = "cross-region"


@dataclass(frozen=True)
class PlannerResponse:
    """Planner output, resolved once at the transport boundary.

    kind == "text": free text in `text`.
    kind == "operation": one negotiated catalog call in `tool_name` / `tool_input`.
    """
    kind: str
    text: str = ""
    tool_name: Optional[str] = None
    tool_input: Dict[str, Any] = field(default_factory=dict)
    stop_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def is_operation(self) -> bool:
        return self.kind == "operation"


class BedrockService:
    """
    Service class for Amazon Bedrock interactions.
    The botocore client never retries on its own and its read timeout tracks the planner timeout.
    """

    def __init__(
        self,
        model_id: Optional[str] = None,
        region: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Any = None,
    ):
        self.model_id = model_id or model_config.model_id
        self.region = region or aws_config.region
        self.timeout = timeout or app_config.planner_timeout

        self.client = client if client is not None else self._create_client()
        logger.info(f"BedrockService initialized with model: {self.model_id}")

    def _create_client(self) -> Any:
        """Create and configure the Bedrock runtime client"""
        load_dotenv(env_path, override=True)
        try:
            session_kwargs = {"region_name": self.region}

            if aws_config.has_profile():
                session_kwargs["profile_name"] = aws_config.profile_name
            elif aws_config.has_explicit_credentials():
                session_kwargs["aws_access_key_id"] = aws_config.access_key_id
                session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
                if aws_config.has_session_token():
                    session_kwargs["aws_session_token"] = aws_config.session_token

            session = boto3.Session(**session_kwargs)
            boto_config = BotoConfig(
                read_timeout=self.timeout,
                connect_timeout=min(self.timeout, 10),
                retries={"total_max_attempts": 1, "mode": "standard"},
            )
            return session.client("bedrock-runtime", config=boto_config)

        except NoCredentialsError:
            raise PlannerError("AWS credentials not configured.", code="NoCredentials")
        except BotoCoreError as e:
            raise PlannerError(f"Failed to initialize Bedrock client: {e}")

    def _get_model_identifier(self, model_id: str, config: GenerationConfig) -> str:
        """Get the appropriate model identifier based on throughput mode"""
        if config.throughput_mode == "cross-region":
            if model_id.startswith(("us.", "eu.", "ap.")):
                return model_id
            elif requires_inference_profile(model_id):
                region_prefix = "eu" if self.region.startswith("eu-") else "us"
                return f"{region_prefix}.{model_id}"

        model_config_data = get_model_config(model_id)
        return model_config_data.get("base_id", model_id)

    def _format_request_body(
        self,
        messages: List[Dict],
        system_prompt: Optional[str],
        config: GenerationConfig,
        tools: Optional[List[Dict]] = None,
    ) -> Dict[str, Any]:
        """Anthropic Messages body. With tools, the model must answer with exactly one tool call."""
        body: Dict[str, Any] = {
            "anthropic_version": ANTHROPIC_VERSION,
            "max_tokens": min(config.max_tokens, get_max_output_tokens(self.model_id)),
            "messages": [
                {"role": m["role"], "content": m["content"]}
                for m in messages if m.get("role") in ("user", "assistant")
            ],
        }
        if system_prompt:
            body["system"] = system_prompt
        if config.temperature is not None:
            body["temperature"] = config.temperature
        if config.stop_sequences:
            body["stop_sequences"] = config.stop_sequences
        if tools:
            body["tools"] = tools
            body["tool_choice"] = {"type": "any", "disable_parallel_tool_use": True}
        return body

    def _parse_response(self, response_body: Dict) -> PlannerResponse:
        """Resolve the Anthropic response body into a PlannerResponse"""
        if response_body.get("type") == "error":
            raise _body_error(response_body.get("error", {}))

        text = ""
        tool_use = None
        for block in response_body.get("content", []):
            block_type = block.get("type", "")
            if block_type == "text":
                text += block.get("text", "")
            elif block_type == "tool_use" and tool_use is None:
                tool_use = block

        usage = response_body.get("usage", {})
        common = dict(
            text=text,
            stop_reason=response_body.get("stop_reason"),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
        )
        if tool_use is not None:
            return PlannerResponse(
                kind="operation",
                tool_name=tool_use.get("name", ""),
                tool_input=tool_use.get("input") or {},
                **common,
            )
        return PlannerResponse(kind="text", **common)

    def generate(
        self,
        messages: List[Dict],
        system_prompt: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        tools: Optional[List[Dict]] = None,
    ) -> PlannerResponse:
        """One non-streaming request. Raises PlannerError."""
        gen_config = config or GenerationConfig()
        model_identifier = self._get_model_identifier(self.model_id, gen_config)
        request_body = self._format_request_body(messages, system_prompt, gen_config, tools=tools)

        logger.info(f"Invoking model: {model_identifier}")
        try:
            response = self.client.invoke_model(
                modelId=model_identifier,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
            response_body = json.loads(response["body"].read())
        except PlannerError:
            raise
        except Exception as e:
            error = classify_error(e)
            logger.error(f"Bedrock API error: {error} (retryable={error.retryable})")
            raise error from e
        return self._parse_response(response_body)

    def generate_stream(
        self,
        messages: List[Dict],
        system_prompt: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Generator[str, None, None]:
        """
        Stream text deltas from the model.
        Stops (and closes the response stream) as soon as `cancel_event` is set.
        Raises PlannerError for API errors and exception events inside the stream.
        """
        gen_config = config or GenerationConfig()
        model_identifier = self._get_model_identifier(self.model_id, gen_config)
        request_body = self._format_request_body(messages, system_prompt, gen_config)

        logger.info(f"Streaming from model: {model_identifier}")
        stream = None
        try:
            response = self.client.invoke_model_with_response_stream(
                modelId=model_identifier,
                body=json.dumps(request_body),
                contentType="application/json",
                accept="application/json",
            )
            stream = response["body"]
            for event in stream:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Stream cancelled")
                    return
                if "chunk" not in event:
                    raise _stream_exception(event)

                chunk = json.loads(event["chunk"]["bytes"])
                event_type = chunk.get("type", "")
                if event_type == "content_block_delta":
                    delta = chunk.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield delta["text"]
                elif event_type == "error":
                    raise _body_error(chunk.get("error", {}))
                elif event_type == "message_stop":
                    return
        except PlannerError:
            raise
        except Exception as e:
            error = classify_error(e)
            logger.error(f"Bedrock streaming error: {error} (retryable={error.retryable})")
            raise error from e
        finally:
            if stream is not None and hasattr(stream, "close"):
                stream.close()

    def test_connection(self) -> tuple:
        """Test the Bedrock connection"""
        try:
            self.generate(
                [{"role": "user", "content": "Hi"}],
                config=GenerationConfig(max_tokens=10, temperature=1.0),
            )
            return True, "Connection successful"
        except PlannerError as e:
            return False, str(e)


def _body_error(error: Dict[str, Any]) -> PlannerError:
    error_type = error.get("type", "unknown")
    return PlannerError(
        f"Model error: {error_type} - {error.get('message', '')}",
        code=error_type,
        retryable=is_retryable(code=error_type),
    )


def _stream_exception(event: Dict[str, Any]) -> PlannerError:
    key = next(iter(event), "unknown")
    code = _STREAM_EXCEPTION_CODES.get(key, key)
    detail = event.get(key) or {}
    message = detail.get("message", "") if isinstance(detail, dict) else str(detail)
    return PlannerError(f"Stream error: {code} - {message}", code=code, retryable=is_retryable(code=code))
