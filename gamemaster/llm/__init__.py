"""
LLM Layer.

Runs model generations through LiteLLM (hosted APIs or local servers),
streams their events to registered handlers, and executes the tool calls the
model makes mid-generation.

    GameLoop  →  Agent.stream(prompt, history snapshot)
                      ↓
            LiteLLM acompletion(stream=True)  →  EventDispatcher
                      ↓
               ToolAdapter.call()  (dice, lookups, player prompts)
                      ↓
                 AgentResult(steps)  →  GameLoop appends to History
"""

from gamemaster.llm.agent import Agent, load_system_prompt
from gamemaster.llm.events import EventDispatcher
from gamemaster.llm.models import (
    AgentResult,
    History,
    LLMError,
    Message,
    Role,
    Step,
    StepError,
    TokenUsage,
)

__all__ = [
    "Agent",
    "AgentResult",
    "EventDispatcher",
    "History",
    "LLMError",
    "Message",
    "Role",
    "Step",
    "StepError",
    "TokenUsage",
    "load_system_prompt",
]
