"""
Inference orchestration for the vision-language service
"""

from .orchestrator import (
    AttemptOutcome, AttemptPhase, AttemptState, ErrorClass, InferenceOrchestrator,
    InferenceRequest, RetryPolicy, classify_error, parse_response, transition,
)

__all__ = ['AttemptOutcome', 'AttemptPhase', 'AttemptState', 'ErrorClass',
           'InferenceOrchestrator', 'InferenceRequest', 'RetryPolicy',
           'classify_error', 'parse_response', 'transition']
