from devmentor.context.assembler import EffectivePrompt, SimpleContext, merge, sanitize
from devmentor.context.limits import CONTEXT_SIZE_LIMITS, ContextPayload, bound

__all__ = [
    "CONTEXT_SIZE_LIMITS",
    "ContextPayload",
    "EffectivePrompt",
    "SimpleContext",
    "bound",
    "merge",
    "sanitize",
]
