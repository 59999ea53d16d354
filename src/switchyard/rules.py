"""Provider compatibility rules.

Each rule is a pure function ``AppliedRules -> AppliedRules``: it may rewrite
messages/config into a compliant shape and may append violations. All rules
registered for a provider run, in order, so callers get the complete
diagnostic list. When any violation is reported, callers must discard the
rewritten messages and config.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from functools import reduce
from typing import TYPE_CHECKING

from switchyard.messages import FilePart, ImagePart, TextPart, ToolCallPart, ToolResultPart

if TYPE_CHECKING:
    from collections.abc import Sequence

    from switchyard.config import GenerationConfig
    from switchyard.messages import Message

ANTHROPIC_DEFAULT_MAX_TOKENS = 4096

_PROVIDER_LABELS: dict[str, str] = {
    "openai": "OpenAI",
    "anthropic": "Anthropic",
    "google": "Google",
    "google_vertex": "Google Vertex",
    "anthropic_vertex": "Anthropic on Vertex",
    "amazon_bedrock": "Amazon Bedrock",
    "groq": "Groq",
    "mistral": "Mistral",
    "xai": "xAI",
    "deepseek": "DeepSeek",
    "perplexity": "Perplexity",
    "custom": "Custom provider",
}


class ProviderRule(StrEnum):
    """Identifiers of the compatibility checks."""

    TOOL_RESULT_ORDER = "tool_result_order"
    TOOL_CALL_UNANSWERED = "tool_call_unanswered"
    TOOL_CHOICE_UNKNOWN = "tool_choice_unknown"
    SYSTEM_MESSAGE_POSITION = "system_message_position"
    SYSTEM_MESSAGE_CONTENT = "system_message_content"
    USER_MESSAGE_REQUIRED = "user_message_required"
    ASSISTANT_ATTACHMENTS = "assistant_attachments"
    TEMPERATURE_RANGE = "temperature_range"


@dataclass(frozen=True)
class RuleViolation:
    rule: ProviderRule
    rule_message: str


@dataclass(frozen=True)
class AppliedRules:
    """Messages and config after rule rewrites, plus accumulated violations."""

    provider: str
    messages: tuple[Message, ...]
    config: GenerationConfig
    violations: tuple[RuleViolation, ...] = ()

    def violate(self, rule: ProviderRule, message: str) -> AppliedRules:
        return replace(
            self, violations=(*self.violations, RuleViolation(rule, message))
        )

    @property
    def label(self) -> str:
        return _PROVIDER_LABELS.get(self.provider, self.provider)


Rule = Callable[[AppliedRules], AppliedRules]


# =============================================================================
# Common rules
# =============================================================================


def tool_results_follow_calls(ctx: AppliedRules) -> AppliedRules:
    """Tool results must directly follow the assistant turn that issued the call.

    Only ``tool`` messages may sit between an assistant tool call and its
    result. Calls left unanswered before the next non-tool turn are reported
    as well.
    """
    pending: dict[str, str] = {}
    answered: set[str] = set()
    for message in ctx.messages:
        if message.role == "tool":
            for part in message.parts:
                if not isinstance(part, ToolResultPart):
                    continue
                if part.tool_call_id not in pending:
                    ctx = ctx.violate(
                        ProviderRule.TOOL_RESULT_ORDER,
                        f"Tool result {part.tool_call_id!r} does not directly "
                        "follow an assistant message calling it.",
                    )
                else:
                    answered.add(part.tool_call_id)
            continue

        ctx = _report_unanswered(ctx, pending, answered)
        pending = {}
        answered = set()
        if message.role == "assistant":
            pending = {
                p.tool_call_id: p.tool_name
                for p in message.parts
                if isinstance(p, ToolCallPart)
            }
    return ctx


def _report_unanswered(
    ctx: AppliedRules, pending: dict[str, str], answered: set[str]
) -> AppliedRules:
    for call_id, name in pending.items():
        if call_id not in answered:
            ctx = ctx.violate(
                ProviderRule.TOOL_CALL_UNANSWERED,
                f"Tool call {call_id!r} ({name}) has no result before the next message.",
            )
    return ctx


def tool_choice_names_known_tool(ctx: AppliedRules) -> AppliedRules:
    choice = ctx.config.tool_choice
    if not isinstance(choice, dict):
        return ctx
    name = choice.get("name")
    if name not in (ctx.config.tools or {}):
        return ctx.violate(
            ProviderRule.TOOL_CHOICE_UNKNOWN,
            f"tool_choice names {name!r}, which is not among the configured tools.",
        )
    return ctx


def clear_cache_control(ctx: AppliedRules) -> AppliedRules:
    """Drop the prompt-caching hint for providers that cannot honour it."""
    if not ctx.config.cache_control:
        return ctx
    return replace(ctx, config=replace(ctx.config, cache_control=False))


# =============================================================================
# Provider-scoped rules
# =============================================================================


def system_messages_first(ctx: AppliedRules) -> AppliedRules:
    seen_other = False
    for message in ctx.messages:
        if message.role != "system":
            seen_other = True
        elif seen_other:
            return ctx.violate(
                ProviderRule.SYSTEM_MESSAGE_POSITION,
                f"{ctx.label} only supports system messages at the beginning "
                "of the conversation.",
            )
    return ctx


def system_messages_text_only(ctx: AppliedRules) -> AppliedRules:
    for message in ctx.messages:
        if message.role == "system" and any(
            not isinstance(p, TextPart) for p in message.parts
        ):
            return ctx.violate(
                ProviderRule.SYSTEM_MESSAGE_CONTENT,
                f"{ctx.label} only supports text content in system messages.",
            )
    return ctx


def user_message_required(ctx: AppliedRules) -> AppliedRules:
    if ctx.messages and not any(m.role == "user" for m in ctx.messages):
        return ctx.violate(
            ProviderRule.USER_MESSAGE_REQUIRED,
            f"{ctx.label} requires at least one user message.",
        )
    return ctx


def assistant_without_attachments(ctx: AppliedRules) -> AppliedRules:
    for message in ctx.messages:
        if message.role == "assistant" and any(
            isinstance(p, (ImagePart, FilePart)) for p in message.parts
        ):
            return ctx.violate(
                ProviderRule.ASSISTANT_ATTACHMENTS,
                f"{ctx.label} does not support images or files in assistant messages.",
            )
    return ctx


def temperature_between(low: float, high: float) -> Rule:
    def rule(ctx: AppliedRules) -> AppliedRules:
        temperature = ctx.config.temperature
        if temperature is not None and not low <= temperature <= high:
            return ctx.violate(
                ProviderRule.TEMPERATURE_RANGE,
                f"{ctx.label} requires temperature between {low:g} and {high:g}, "
                f"got {temperature:g}.",
            )
        return ctx

    return rule


def default_max_tokens(value: int) -> Rule:
    def rule(ctx: AppliedRules) -> AppliedRules:
        if ctx.config.max_tokens is not None:
            return ctx
        return replace(ctx, config=replace(ctx.config, max_tokens=value))

    return rule


_COMMON_RULES: tuple[Rule, ...] = (
    tool_results_follow_calls,
    tool_choice_names_known_tool,
)

_OPENAI_COMPATIBLE_RULES: tuple[Rule, ...] = (
    clear_cache_control,
    assistant_without_attachments,
    temperature_between(0, 2),
)

_ANTHROPIC_RULES: tuple[Rule, ...] = (
    system_messages_first,
    system_messages_text_only,
    temperature_between(0, 1),
    default_max_tokens(ANTHROPIC_DEFAULT_MAX_TOKENS),
)

_GOOGLE_RULES: tuple[Rule, ...] = (
    clear_cache_control,
    system_messages_first,
    system_messages_text_only,
    user_message_required,
    temperature_between(0, 2),
)

_PROVIDER_RULES: dict[str, tuple[Rule, ...]] = {
    "anthropic": _ANTHROPIC_RULES,
    "anthropic_vertex": _ANTHROPIC_RULES,
    "amazon_bedrock": _ANTHROPIC_RULES,
    "google": _GOOGLE_RULES,
    "google_vertex": _GOOGLE_RULES,
    "openai": _OPENAI_COMPATIBLE_RULES,
    "groq": _OPENAI_COMPATIBLE_RULES,
    "mistral": (*_OPENAI_COMPATIBLE_RULES, system_messages_text_only),
    "xai": _OPENAI_COMPATIBLE_RULES,
    "deepseek": (*_OPENAI_COMPATIBLE_RULES, system_messages_text_only),
    "perplexity": (*_OPENAI_COMPATIBLE_RULES, system_messages_first),
    "custom": _OPENAI_COMPATIBLE_RULES,
}


def rules_for(provider: str) -> tuple[Rule, ...]:
    """Return the ordered rules that apply to *provider*."""
    return (*_COMMON_RULES, *_PROVIDER_RULES.get(provider, ()))


def apply_all_rules(
    *,
    provider: str,
    messages: Sequence[Message],
    config: GenerationConfig,
) -> AppliedRules:
    """Run every rule registered for *provider* over messages and config."""
    initial = AppliedRules(provider=provider, messages=tuple(messages), config=config)
    return reduce(lambda ctx, rule: rule(ctx), rules_for(provider), initial)
