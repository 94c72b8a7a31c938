"""
Prompt Template Module.

Provides persona prompts and default rubrics per grading domain.
"""

from feedback_engine.templates.registry import PromptTemplate, TemplateKey, TemplateRegistry

__all__ = [
    "PromptTemplate",
    "TemplateKey",
    "TemplateRegistry",
]
