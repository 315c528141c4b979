"""
Curriculum hierarchy lookups.

- models: grade level / subject / topic / sub-topic nodes
- index: O(1) sub-topic ancestry maps, rebuilt on every edit
- catalog: provider-backed loading around the index
- progress: practice coverage roll-ups
"""

from .catalog import CurriculumCatalog
from .index import CurriculumIndex
from .models import GradeLevel, Subject, SubTopic, SubTopicHierarchy, Topic

__all__ = [
    "CurriculumCatalog",
    "CurriculumIndex",
    "GradeLevel",
    "Subject",
    "SubTopic",
    "SubTopicHierarchy",
    "Topic",
]
