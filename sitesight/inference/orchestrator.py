"""
Inference orchestration: retry, model fallback and response parsing.

Every call to the vision-language service goes through
``InferenceOrchestrator.invoke``. The retry policy is an explicit state
machine: ``transition`` is a pure function from (state, outcome) to the next
state, and the injected ``call`` is the only side effect.

    Attempting --success--------------------------> Done
    Attempting --transient, fallback unused-------> Attempting (fallback model, fixed delay)
    Attempting --transient, fallback used/none----> Attempting (same model, doubled delay)
    Attempting --permanent------------------------> Attempting (same model, fixed delay)
    Attempting --any failure at max_attempts------> Failed
"""

import json
import logging
import re
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..exceptions import (
    InferenceFailedError, InferenceResponseError, PermissionDeniedError,
    TransientServiceError,
)
from ..models import PhotoRecord

logger = logging.getLogger(__name__)


class AttemptPhase(str, Enum):
    ATTEMPTING = "attempting"
    DONE = "done"
    FAILED = "failed"


class ErrorClass(str, Enum):
    """How a failed call is treated."""
    TRANSIENT = "transient"   # rate limit / unavailable: switch model
    PERMANENT = "permanent"   # malformed or off-schema answer: retry same model
    ABORT = "abort"           # permission denied: never retried


@dataclass(frozen=True)
class RetryPolicy:
    """Model selection and retry limits for one invocation"""
    primary_model: str
    fallback_model: Optional[str] = None
    max_attempts: int = 3
    retry_delay: float = 2.0

    @classmethod
    def from_config(cls, config: Dict) -> 'RetryPolicy':
        inference = config.get('inference', {})
        return cls(
            primary_model=inference.get('primary_model', 'gemini-2.5-flash'),
            fallback_model=inference.get('fallback_model') or None,
            max_attempts=max(1, int(inference.get('max_attempts', 3))),
            retry_delay=float(inference.get('retry_delay', 2.0)),
        )


@dataclass(frozen=True)
class AttemptOutcome:
    """Result of one call: a parsed result, or an error with its class."""
    error_class: Optional[ErrorClass] = None
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error_class is None

    @classmethod
    def success(cls, result: Any) -> 'AttemptOutcome':
        return cls(result=result)

    @classmethod
    def failure(cls, error: BaseException, error_class: ErrorClass) -> 'AttemptOutcome':
        return cls(error_class=error_class, error=error)


@dataclass(frozen=True)
class AttemptState:
    """
    State of one invocation

    ``delay`` is the wait before the current attempt. ``history`` records
    (model, outcome) for every finished attempt.
    """
    phase: AttemptPhase
    model: str
    attempt: int = 1
    delay: float = 0.0
    switches: int = 0
    last_error: Optional[BaseException] = None
    result: Any = None
    history: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def initial(cls, policy: RetryPolicy) -> 'AttemptState':
        return cls(phase=AttemptPhase.ATTEMPTING, model=policy.primary_model)


def transition(state: AttemptState, outcome: AttemptOutcome,
               policy: RetryPolicy) -> AttemptState:
    """
    Next state after an attempt finishes

    Args:
        state: State of the attempt that just finished
        outcome: What the attempt produced
        policy: Retry policy of the invocation

    Returns:
        A new AttemptState; the input state is never modified
    """
    if state.phase != AttemptPhase.ATTEMPTING:
        return state

    label = 'success' if outcome.succeeded else outcome.error_class.value
    history = state.history + ((state.model, label),)

    if outcome.succeeded:
        return replace(state, phase=AttemptPhase.DONE, result=outcome.result,
                       history=history)

    failed = replace(state, last_error=outcome.error, history=history)

    if outcome.error_class == ErrorClass.ABORT or state.attempt >= policy.max_attempts:
        return replace(failed, phase=AttemptPhase.FAILED)

    next_attempt = replace(failed, attempt=state.attempt + 1)

    if outcome.error_class == ErrorClass.TRANSIENT:
        can_switch = (policy.fallback_model is not None
                      and state.switches == 0
                      and state.model != policy.fallback_model)
        if can_switch:
            return replace(next_attempt, model=policy.fallback_model,
                           switches=state.switches + 1, delay=policy.retry_delay)
        # Nowhere further to fall back to
        return replace(next_attempt, delay=max(state.delay, policy.retry_delay) * 2)

    return replace(next_attempt, delay=policy.retry_delay)


def classify_error(error: BaseException) -> ErrorClass:
    """Default classifier for errors raised by SiteSight itself"""
    if isinstance(error, PermissionDeniedError):
        return ErrorClass.ABORT
    if isinstance(error, TransientServiceError):
        return ErrorClass.TRANSIENT
    return ErrorClass.PERMANENT


_FENCE = re.compile(r'```(?:json|JSON)?')
_ARRAY = re.compile(r'\[.*\]', re.DOTALL)
_OBJECT = re.compile(r'\{.*\}', re.DOTALL)

_SCHEMA_TYPES = {
    'ARRAY': list,
    'OBJECT': dict,
}


def parse_response(text: Optional[str], schema: Optional[Dict[str, Any]] = None) -> Any:
    """
    Parse a model response into JSON

    Markdown code fences are stripped. When the text is not pure JSON, the
    first array or object found in it is used instead.

    Args:
        text: Raw response text
        schema: Response schema; its top-level type is enforced

    Returns:
        Parsed JSON value

    Raises:
        InferenceResponseError: If no JSON can be recovered or the top-level
            type does not match the schema
    """
    if not text or not text.strip():
        raise InferenceResponseError("Empty response", raw_text=text or "")

    cleaned = _FENCE.sub('', text).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        parsed = _extract_embedded_json(cleaned, text)

    expected = _SCHEMA_TYPES.get(str((schema or {}).get('type', '')).upper())
    if expected is not None and not isinstance(parsed, expected):
        raise InferenceResponseError(
            f"Expected a JSON {expected.__name__}, got {type(parsed).__name__}",
            raw_text=text,
        )
    return parsed


def _extract_embedded_json(cleaned: str, raw_text: str) -> Any:
    candidates = [m for m in (_ARRAY.search(cleaned), _OBJECT.search(cleaned)) if m]
    if not candidates:
        raise InferenceResponseError("Invalid JSON response", raw_text=raw_text)

    first = min(candidates, key=lambda m: m.start())
    try:
        return json.loads(first.group(0))
    except json.JSONDecodeError as e:
        raise InferenceResponseError(f"Invalid JSON response: {e}", raw_text=raw_text) from e


@dataclass
class InferenceRequest:
    """One call to the vision-language service."""
    model: str
    batch: List[PhotoRecord]
    prompt: str
    schema: Optional[Dict[str, Any]] = None
    temperature: Optional[float] = None
    system_instruction: Optional[str] = None
    attempt: int = 1


class InferenceOrchestrator:
    """
    Run a request against the inference service with retry and fallback
    """

    def __init__(self,
                 call: Callable[[InferenceRequest], str],
                 policy: RetryPolicy,
                 classify_error: Callable[[BaseException], ErrorClass] = classify_error,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the orchestrator

        Args:
            call: Performs the network request and returns the raw response text
            policy: Model selection and retry limits
            classify_error: Maps a raised error to its ErrorClass
            sleep: Wait function used between attempts
        """
        self.call = call
        self.policy = policy
        self.classify_error = classify_error
        self.sleep = sleep
        self.last_state: Optional[AttemptState] = None

    def invoke(self, batch: Sequence[PhotoRecord], prompt: str,
               schema: Optional[Dict[str, Any]] = None,
               temperature: Optional[float] = None,
               system_instruction: Optional[str] = None) -> Any:
        """
        Send a batch and prompt, returning the parsed JSON response

        Args:
            batch: Photos whose payloads are attached to the request
            prompt: Task prompt
            schema: Response schema, also used to check the parsed result
            temperature: Sampling temperature; provider default when None
            system_instruction: Optional system prompt

        Returns:
            Parsed JSON value

        Raises:
            PermissionDeniedError: The service refused the credentials
            InferenceFailedError: All attempts failed; chained to the last error
        """
        state = AttemptState.initial(self.policy)

        while state.phase == AttemptPhase.ATTEMPTING:
            if state.delay > 0:
                logger.debug(f"Waiting {state.delay:.1f}s before attempt {state.attempt}")
                self.sleep(state.delay)

            request = InferenceRequest(
                model=state.model,
                batch=list(batch),
                prompt=prompt,
                schema=schema,
                temperature=temperature,
                system_instruction=system_instruction,
                attempt=state.attempt,
            )

            try:
                outcome = AttemptOutcome.success(parse_response(self.call(request), schema))
            except Exception as e:
                error_class = self.classify_error(e)
                logger.warning(f"Attempt {state.attempt}/{self.policy.max_attempts} "
                               f"on {state.model} failed ({error_class.value}): {e}")
                outcome = AttemptOutcome.failure(e, error_class)

            previous_model = state.model
            state = transition(state, outcome, self.policy)
            if state.phase == AttemptPhase.ATTEMPTING and state.model != previous_model:
                logger.info(f"Switching model: {previous_model} -> {state.model}")

        self.last_state = state

        if state.phase == AttemptPhase.DONE:
            return state.result

        error = state.last_error
        if self.classify_error(error) == ErrorClass.ABORT:
            if isinstance(error, PermissionDeniedError):
                raise error
            raise PermissionDeniedError(str(error)) from error

        raise InferenceFailedError(
            f"Inference failed after {state.attempt} attempts: {error}",
            attempts=state.attempt,
            model=state.model,
        ) from error
