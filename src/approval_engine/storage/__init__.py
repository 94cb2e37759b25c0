"""Storage and repository interfaces"""

from .repository import (
    TemplateRepository,
    InstanceRepository,
    InMemoryTemplateRepository,
    InMemoryInstanceRepository
)

__all__ = [
    "TemplateRepository",
    "InstanceRepository",
    "InMemoryTemplateRepository",
    "InMemoryInstanceRepository"
]
