"""Turn classifier: labels an agent's final message with one LLM call.

Labels:
  DONE         - work is genuinely complete
  VALID-PAUSE  - blocked on input or approval only the user can give
  MORE-CONTEXT - cannot tell from the given window
  NEEDS-NUDGE  - work was deferred, offered, or left as suggestions

Fails open: any failure to reach or understand the model yields DONE.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from nudge.completion import STOP_ABORTED, STOP_ERROR, Completion, CompletionRequest
from nudge.config import Settings
from nudge.host import HostSession
from nudge.registry import Model, ModelRegistry

logger = logging.getLogger(__name__)


class Classification(StrEnum):
    DONE = "DONE"
    VALID_PAUSE = "VALID-PAUSE"
    MORE_CONTEXT = "MORE-CONTEXT"
    NEEDS_NUDGE = "NEEDS-NUDGE"


# Most actionable label first; a reply mentioning several resolves to the earliest.
_LABEL_PRIORITY = (
    Classification.NEEDS_NUDGE,
    Classification.MORE_CONTEXT,
    Classification.VALID_PAUSE,
)

CLASSIFIER_SYSTEM_PROMPT = """You classify the final assistant message in a coding agent conversation.

Respond with exactly one of these labels (nothing else):

DONE
The assistant genuinely completed all requested work. Tests pass, files are written, changes are made, commits are pushed. Nothing remains. Summaries of completed work are DONE, not NEEDS-NUDGE: if the assistant is recapping what it already did, the work is finished.
Examples:
- "I've implemented the changes and all tests pass."
- "The refactor is complete. Here's a summary of what changed."
- "Done! The bug was in line 42, I've fixed it and verified the fix."
- "Pushed. To summarize the full fix: ..." (recapping completed work)
- "All changes committed. Here's what we did: ..." (past-tense summary)
- A message listing changes in past tense (converted, fixed, updated, etc.) is reporting done work.

VALID-PAUSE
The assistant stopped for a legitimate reason that requires user input before it can continue. It is NOT deferring; it literally cannot proceed without the user.
Examples:
- "Which approach would you prefer: A or B?"
- "Could you clarify what you mean by X?"
- "What's the database password / API key / endpoint?"
- "Should I proceed with this plan?" (presenting a plan for approval)
- "I found two interpretations. Which did you mean?"

MORE-CONTEXT
You cannot determine the correct classification from the provided messages alone. You need to see more of the conversation to understand what the user originally asked and whether the assistant actually finished.
Only use this when the assistant's response is ambiguous without more history, e.g. it gave a summary or partial answer and you can't tell if the original request was fully addressed.

NEEDS-NUDGE
The assistant avoided, deferred, or left incomplete work that the user asked it to do. It suggested the user do something themselves, offered to do it "if you'd like", listed steps without executing them, or otherwise stopped short. Also applies when the assistant claims to have "deferred" work that the user never asked to defer.
Examples:
- "You can run the tests yourself to verify."
- "Let me know if you'd like me to implement that."
- "I'll leave the actual deployment to you."
- "Here's what you'd need to do: 1. ... 2. ... 3. ..."
- "I can make these changes if you'd like."
- Providing code snippets for the user to apply manually instead of using tools.
- Listing remaining TODOs without doing them.
- "I've outlined the approach. Let me know if you want me to proceed."
- "I've deferred X for now" / "We can handle X later" (when the user didn't ask to defer it).
- Marking something as out of scope or future work when the user's request included it.
- Categorizing remaining work as "deferred", "future sessions", "follow-up", "nice to have", or "out of scope" when the user never asked to defer or deprioritize those items.
- Presenting a "done" summary that lists unfinished items as deferred/future work.
- Diagnosing a problem or identifying remaining failures without proceeding to fix them.
- Reporting test results with failures and stopping instead of fixing them.
"""


def parse_classification(text: str) -> Classification:
    """Map free-form model output to a label. Unrecognized output is DONE."""
    upper = text.upper()
    for label in _LABEL_PRIORITY:
        if label.value in upper:
            return label
    return Classification.DONE


@dataclass
class ModelSelection:
    model: Model
    api_key: str


async def select_classifier_model(
    host: HostSession,
    registry: ModelRegistry,
    settings: Settings,
) -> ModelSelection | None:
    """Prefer the fast classifier model on a matching provider, else the active model."""
    active = host.model
    if active is None:
        return None

    if active.provider == settings.classifier_provider:
        fast = registry.find(settings.classifier_provider, settings.classifier_model)
        if fast is not None:
            api_key = await registry.get_api_key(fast)
            if api_key:
                return ModelSelection(fast, api_key)

    api_key = await registry.get_api_key(active)
    if not api_key:
        return None
    return ModelSelection(active, api_key)


class TurnClassifier:
    """Runs one classification pass per call. Never raises to the caller."""

    def __init__(
        self,
        completion: Completion,
        registry: ModelRegistry,
        settings: Settings,
    ) -> None:
        self._completion = completion
        self._registry = registry
        self._settings = settings

    async def classify(self, context: str, host: HostSession) -> Classification:
        try:
            selection = await select_classifier_model(host, self._registry, self._settings)
        except Exception as e:
            logger.warning("Classifier model selection failed, assuming DONE: %s", e)
            return Classification.DONE
        if selection is None:
            logger.debug("No classifier model/credential available, assuming DONE")
            return Classification.DONE

        request = CompletionRequest(
            system_prompt=CLASSIFIER_SYSTEM_PROMPT,
            messages=[{"role": "user", "content": [{"type": "text", "text": context}]}],
        )

        try:
            response = await self._completion.complete(
                selection.model,
                request,
                api_key=selection.api_key,
                max_tokens=self._settings.classifier_max_tokens,
            )
            if response.stop_reason in (STOP_ABORTED, STOP_ERROR):
                logger.debug("Classification stopped with %s, assuming DONE", response.stop_reason)
                return Classification.DONE
            return parse_classification(response.text)
        except Exception as e:
            logger.warning("Classification call failed, assuming DONE: %s", e)
            return Classification.DONE
