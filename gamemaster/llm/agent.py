"""
Streaming agent: one turn of model generation with tool use.

Data flow for a single turn:

    prompt + History snapshot  →  Agent.stream()
                                      ↓
                       LiteLLM acompletion(stream=True)  →  EventDispatcher (console)
                                      ↓
                         tool calls?  →  ToolAdapter.call()  →  tool messages
                                      ↓
                       next step with the tool results appended ...
                                      ↓
                          AgentResult(steps=[...])  →  game loop appends to History

Design decisions:
- Uses LiteLLM for provider abstraction, so a hosted model and a local
  Ollama model are one config string apart.
- The agent never stores History. It gets a snapshot per turn and returns
  the new messages; the game loop decides what to keep.
- Tool errors are ordinary tool results (the registry guarantees that), so
  the model can narrate around a failed lookup.
- A max_steps limit prevents runaway tool loops. The last allowed step is
  sent without tool definitions, forcing a text response.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from litellm import acompletion

from gamemaster.config.settings import LLMSettings
from gamemaster.llm.events import (
    EventDispatcher,
    ReasoningDelta,
    ReasoningEnd,
    ReasoningStart,
    TextDelta,
    ToolCallEvent,
    ToolResultEvent,
)
from gamemaster.llm.models import (
    AgentResult,
    LLMError,
    Message,
    ReasoningPart,
    Role,
    Step,
    StepError,
    TextPart,
    TokenUsage,
    ToolCallPart,
    ToolResultPart,
)
from gamemaster.tools.base import ToolAdapter, ToolResponse

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT_PATH = Path(__file__).parent.parent / "prompts" / "system.txt"


def load_system_prompt(path: Path | None = None) -> str:
    """
    Read the system prompt, falling back to the packaged one.

    Raises:
        OSError: If the file can't be read
        ValueError: If the file is empty
    """
    prompt_path = path or DEFAULT_SYSTEM_PROMPT_PATH
    text = prompt_path.read_text(encoding="utf-8").strip()
    if not text:
        raise ValueError(f"System prompt is empty: {prompt_path}")
    return text


def message_to_wire(message: Message) -> list[dict[str, Any]]:
    """
    Convert a Message to LiteLLM (OpenAI format) chat messages.

    Reasoning is not sent back. A tool message becomes one wire message per
    result, since each must carry its own tool_call_id.
    """
    if message.role == Role.TOOL:
        return [
            {"role": "tool", "tool_call_id": result.call_id, "content": result.text}
            for result in message.tool_results
        ]

    if message.role == Role.ASSISTANT:
        wire: dict[str, Any] = {"role": "assistant", "content": message.text or None}
        calls = message.tool_calls
        if calls:
            wire["tool_calls"] = [
                {
                    "id": call.call_id,
                    "type": "function",
                    "function": {"name": call.tool_name, "arguments": call.arguments},
                }
                for call in calls
            ]
        return [wire]

    return [{"role": message.role.value, "content": message.text}]


@dataclass
class _PartialCall:
    """Tool call being assembled from streamed fragments."""

    call_id: str = ""
    name: str = ""
    arguments: str = ""


class Agent:
    """
    Runs one streamed generation per turn, looping through tool calls.

    Args:
        settings: LLM configuration (model, temperature, max_tokens, api_key)
        system_prompt: Instructions sent as the system message of every request
        tools: Tool adapter the model may call (None disables tool use)
        max_steps: Safety limit on generation steps per turn (default: 25)
    """

    def __init__(
        self,
        settings: LLMSettings,
        system_prompt: str,
        tools: ToolAdapter | None = None,
        max_steps: int = 25,
    ):
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self._settings = settings
        self._system_prompt = system_prompt
        self._tools = tools
        self._max_steps = max_steps

    def _tool_definitions(self) -> list[dict[str, Any]] | None:
        """Tool schemas wrapped in the OpenAI function format, or None without tools."""
        if self._tools is None:
            return None
        definitions = [
            {
                "type": "function",
                "function": {
                    "name": tool["name"],
                    "description": tool["description"],
                    "parameters": tool["input_schema"],
                },
            }
            for tool in self._tools.list_tools()
        ]
        return definitions or None

    def _build_messages(self, prompt: str, history: Sequence[Message]) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = [{"role": "system", "content": self._system_prompt}]
        for message in history:
            messages.extend(message_to_wire(message))
        messages.append({"role": "user", "content": prompt})
        return messages

    async def stream(
        self,
        prompt: str,
        history: Sequence[Message],
        dispatcher: EventDispatcher,
    ) -> AgentResult:
        """
        Generate one turn.

        Args:
            prompt: The user message for this turn (e.g. "Begin." or "Continue.")
            history: Read-only snapshot of the conversation so far
            dispatcher: Receives every stream event as it arrives

        Returns:
            AgentResult with each step's messages in emission order

        Raises:
            ValueError: If prompt is empty or whitespace-only
            LLMError: If the provider call or stream fails
            StepError: If an event handler fails or the stream breaks ordering
        """
        prompt = prompt.strip()
        if not prompt:
            raise ValueError("Prompt cannot be empty")

        messages = self._build_messages(prompt, history)
        tool_definitions = self._tool_definitions()

        result = AgentResult()
        for index in range(self._max_steps):
            # The last allowed step goes out without tools so the model has to answer
            offer_tools = tool_definitions if index < self._max_steps - 1 else None
            if offer_tools and self._tools is not None:
                self._tools.begin_step()

            step = await self._run_step(index, messages, offer_tools, dispatcher, result)
            result.steps.append(step)

            if not step.tool_calls:
                break
            for message in step.messages:
                messages.extend(message_to_wire(message))
        else:
            logger.warning(f"Turn hit the step limit ({self._max_steps})")

        logger.debug(
            f"Turn finished in {len(result.steps)} step(s), "
            f"{result.usage.total_tokens} tokens"
        )
        return result

    async def _run_step(
        self,
        index: int,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        dispatcher: EventDispatcher,
        result: AgentResult,
    ) -> Step:
        call_kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "messages": list(messages),
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if self._settings.api_key:
            call_kwargs["api_key"] = self._settings.api_key
        if self._settings.api_base:
            call_kwargs["api_base"] = self._settings.api_base
        if tools:
            call_kwargs["tools"] = tools

        try:
            response = await acompletion(**call_kwargs)
        except Exception as e:
            raise LLMError(f"LLM API call failed: {e}", cause=e)

        reasoning: list[str] = []
        text: list[str] = []
        partial_calls: dict[int, _PartialCall] = {}
        finish_reason: str | None = None
        usage = TokenUsage()

        async def end_reasoning() -> None:
            if dispatcher.in_reasoning:
                await dispatcher.dispatch(ReasoningEnd(step=index, text="".join(reasoning)))

        try:
            async for chunk in response:
                chunk_usage = getattr(chunk, "usage", None)
                if chunk_usage is not None:
                    usage = _read_usage(chunk_usage)
                model = getattr(chunk, "model", None)
                if isinstance(model, str) and model:
                    result.model = model

                choices = getattr(chunk, "choices", None) or []
                if not choices:
                    continue
                choice = choices[0]
                delta = choice.delta

                reasoning_delta = getattr(delta, "reasoning_content", None)
                if isinstance(reasoning_delta, str) and reasoning_delta:
                    if not dispatcher.in_reasoning:
                        await dispatcher.dispatch(ReasoningStart(step=index))
                    reasoning.append(reasoning_delta)
                    await dispatcher.dispatch(ReasoningDelta(step=index, text=reasoning_delta))

                content = getattr(delta, "content", None)
                if isinstance(content, str) and content:
                    await end_reasoning()
                    text.append(content)
                    await dispatcher.dispatch(TextDelta(step=index, text=content))

                for fragment in getattr(delta, "tool_calls", None) or []:
                    await end_reasoning()
                    _merge_fragment(partial_calls, fragment)

                if isinstance(choice.finish_reason, str):
                    finish_reason = choice.finish_reason
        except StepError:
            raise
        except Exception as e:
            raise LLMError(f"LLM stream failed: {e}", cause=e)

        await end_reasoning()

        calls = [
            ToolCallPart(
                call_id=partial.call_id or f"call_{index}_{position}_{uuid.uuid4().hex[:8]}",
                tool_name=partial.name,
                arguments=partial.arguments or "{}",
            )
            for position, partial in sorted(partial_calls.items())
        ]

        parts: list[Any] = []
        if reasoning:
            parts.append(ReasoningPart(text="".join(reasoning)))
        if text:
            parts.append(TextPart(text="".join(text)))
        parts.extend(calls)
        step_messages = [Message(role=Role.ASSISTANT, parts=tuple(parts))]

        # Tools run one at a time, in the order the model issued them
        for call in calls:
            await dispatcher.dispatch(
                ToolCallEvent(
                    step=index,
                    call_id=call.call_id,
                    tool_name=call.tool_name,
                    arguments=call.arguments,
                )
            )
            logger.info(f"Tool call {call.tool_name}({call.arguments})")
            tool_response = await self._call_tool(call)
            await dispatcher.dispatch(
                ToolResultEvent(
                    step=index,
                    call_id=call.call_id,
                    tool_name=call.tool_name,
                    text=tool_response.text,
                    is_error=tool_response.is_error,
                )
            )
            step_messages.append(
                Message(
                    role=Role.TOOL,
                    parts=(
                        ToolResultPart(
                            call_id=call.call_id,
                            tool_name=call.tool_name,
                            text=tool_response.text,
                            is_error=tool_response.is_error,
                        ),
                    ),
                )
            )

        dispatcher.finish_step()
        return Step(index=index, messages=step_messages, finish_reason=finish_reason, usage=usage)

    async def _call_tool(self, call: ToolCallPart) -> ToolResponse:
        if self._tools is None:
            return ToolResponse.error(f"Error: no tools are available (requested '{call.tool_name}')")
        return await self._tools.call(call.tool_name, call.arguments, call.call_id)


def _merge_fragment(partial_calls: dict[int, _PartialCall], fragment: Any) -> None:
    """Fold one streamed tool-call fragment into the call it belongs to."""
    position = getattr(fragment, "index", None)
    if not isinstance(position, int):
        position = max(partial_calls, default=-1)
        # A fragment carrying a new id without an index starts a new call
        fragment_id = getattr(fragment, "id", None)
        if position < 0 or (fragment_id and partial_calls[position].call_id not in ("", fragment_id)):
            position += 1
    partial = partial_calls.setdefault(position, _PartialCall())

    fragment_id = getattr(fragment, "id", None)
    if isinstance(fragment_id, str) and fragment_id:
        partial.call_id = fragment_id

    function = getattr(fragment, "function", None)
    if function is not None:
        name = getattr(function, "name", None)
        if isinstance(name, str) and name:
            partial.name = name
        arguments = getattr(function, "arguments", None)
        if isinstance(arguments, str):
            partial.arguments += arguments


def _read_usage(usage: Any) -> TokenUsage:
    prompt_tokens = getattr(usage, "prompt_tokens", 0)
    completion_tokens = getattr(usage, "completion_tokens", 0)
    return TokenUsage(
        prompt_tokens=prompt_tokens if isinstance(prompt_tokens, int) else 0,
        completion_tokens=completion_tokens if isinstance(completion_tokens, int) else 0,
    )
