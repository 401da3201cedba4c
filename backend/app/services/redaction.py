"""
LoveCakes Backend — Parameter Redaction
=========================================

What:  Masks stored-procedure parameter values before they reach logs or
       exception context.
How:   Allow-list policy: only names listed in DB_LOGGABLE_PARAMETERS keep
       their value; everything else becomes "***". Names compare
       case-insensitively, with any leading "@" ignored, matching how
       SQL Server resolves parameter names.
"""

from typing import Any, Dict, Iterable, Mapping

REDACTED = "***"


class RedactionPolicy:
    """Allow-list of parameter names whose values may be logged."""

    def __init__(self, loggable: Iterable[str] = ()):
        self._loggable = frozenset(_normalize(name) for name in loggable)

    def is_loggable(self, name: str) -> bool:
        return _normalize(name) in self._loggable

    def redact(self, parameters: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            name: (value if self.is_loggable(name) else REDACTED)
            for name, value in parameters.items()
        }


def _normalize(name: str) -> str:
    return name.strip().lstrip("@").lower()
