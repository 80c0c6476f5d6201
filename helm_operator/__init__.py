"""
.. include:: ../README.md
"""

__all__ = [
    "manifest",
    "helm",
    "helm_controller",
    "source_controller",
    "status",
    "operator",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
