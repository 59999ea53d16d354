"""Switchyard: one streaming call surface over many LLM providers.

Public API:
    - ai(): Validate, route and stream one model invocation
    - invoke(): Same, for a pre-built GenerationRequest
    - ProviderDescriptor / GenerationConfig: Who serves the call, and how
    - Success / Failure: Result values; failures carry a ChainError
"""

from __future__ import annotations

import logging

from switchyard.abort import AbortSignal
from switchyard.config import (
    AmazonBedrockConfiguration,
    GenerationConfig,
    GoogleCredentials,
    ProviderDescriptor,
    VertexConfiguration,
)
from switchyard.errors import (
    APIError,
    ChainError,
    ConfigurationError,
    ObjectGenerationError,
    RateLimitError,
    RequestError,
    RunErrorCode,
    StreamAbortedError,
    SwitchyardError,
    ToolBuildError,
)
from switchyard.messages import (
    FilePart,
    ImagePart,
    Message,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from switchyard.orchestrator import ai, invoke
from switchyard.providers import resolve_provider
from switchyard.request import GenerationRequest, normalize_request
from switchyard.result import Failure, ObjectResult, Success, TextResult
from switchyard.rules import apply_all_rules
from switchyard.smoothing import smooth_stream
from switchyard.streaming import DefaultStreamingBackend, StreamingBackend
from switchyard.telemetry import TelemetrySettings, register_reporter
from switchyard.tools import build_tools
from switchyard.translate import register_classifier, translate_error

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("switchyard")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("switchyard").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AbortSignal",
    "AmazonBedrockConfiguration",
    "ChainError",
    "ConfigurationError",
    "DefaultStreamingBackend",
    "Failure",
    "FilePart",
    "GenerationConfig",
    "GenerationRequest",
    "GoogleCredentials",
    "ImagePart",
    "Message",
    "ObjectGenerationError",
    "ObjectResult",
    "ProviderDescriptor",
    "RateLimitError",
    "RequestError",
    "RunErrorCode",
    "StreamAbortedError",
    "StreamingBackend",
    "Success",
    "SwitchyardError",
    "TelemetrySettings",
    "TextPart",
    "TextResult",
    "ToolBuildError",
    "ToolCallPart",
    "ToolResultPart",
    "VertexConfiguration",
    "ai",
    "apply_all_rules",
    "build_tools",
    "invoke",
    "normalize_request",
    "register_classifier",
    "register_reporter",
    "resolve_provider",
    "smooth_stream",
    "translate_error",
]
