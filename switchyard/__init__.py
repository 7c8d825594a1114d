"""
Switchyard - Local-first LLM orchestration core.

Decides per query whether a small on-device model can answer, validates
the answer it produced, and escalates to a cloud backend (even mid-stream)
when quality degrades. Queries carrying personal data never leave the device.

Example:
    >>> from switchyard.domains.orchestration import Query
    >>> from switchyard.interfaces.api.deps import build_orchestrator
    >>> orchestrator = await build_orchestrator()
    >>> result = await orchestrator.run(Query(text="What is 2+2?"))
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
