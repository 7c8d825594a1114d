"""
Domains - Orchestration core.

Each domain is self-contained with:
- contracts.py: Interfaces (Protocol classes)
- models.py: Pydantic data models
- Implementation files
- test_*.py beside the code
"""

__all__ = [
    "routing",
    "quality",
    "orchestration",
]
