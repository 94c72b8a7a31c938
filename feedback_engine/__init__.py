"""
Feedback Engine - LLM-backed feedback for student submissions.

This package turns a submission plus its assignment context into a
structured, scored feedback record. Domain-specific prompt templates,
provider failover with bounded retry, tolerant parsing of model output and
a content-addressed response cache keep the result well-formed and cheap
to repeat.
"""

__version__ = "1.0.0"
__author__ = "Feedback Engine Team"
