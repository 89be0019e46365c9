"""Output template catalog and default-template synthesis."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from loguru import logger

from .models import OutputType, Template

BUILTIN_TEMPLATES: List[Template] = [
    Template(
        id="action-command",
        name="Action Command Template",
        type=OutputType.ACTION,
        description="Template for action commands",
        structure={"command": None, "parameters": {}, "timestamp": None, "priority": "medium"},
        parameters={"validation": True},
        validation=["command_valid", "parameters_check"],
    ),
    Template(
        id="response-message",
        name="Response Message Template",
        type=OutputType.RESPONSE,
        description="Template for response messages",
        structure={"status": None, "data": None, "timestamp": None, "requestId": None},
        parameters={"includeMetadata": True},
        validation=["status_valid", "data_format"],
    ),
    Template(
        id="feedback-signal",
        name="Feedback Signal Template",
        type=OutputType.FEEDBACK,
        description="Template for feedback signals",
        structure={"feedbackType": None, "value": None, "confidence": None, "timestamp": None},
        parameters={"realTime": True},
        validation=["type_check", "value_range"],
    ),
]


def default_template(kind: OutputType, now: datetime) -> Template:
    """Template synthesized when no registered template matches ``kind``."""
    return Template(
        id=f"default-{kind.value}",
        name=f"Default {kind.value} Template",
        type=kind,
        description=f"Default template for {kind.value} outputs",
        structure={"type": kind.value, "timestamp": now.isoformat(), "data": None},
        parameters={},
        validation=["type_check", "timestamp_valid"],
    )


class TemplateRegistry:
    """Ordered template catalog; the first registered match for a kind wins."""

    def __init__(self, templates: Optional[Iterable[Template]] = None):
        self._templates: Dict[str, Template] = {}
        for t in BUILTIN_TEMPLATES if templates is None else templates:
            self.register(t)

    def register(self, template: Template) -> None:
        if template.id in self._templates:
            logger.debug(f"Replacing template {template.id}")
        self._templates[template.id] = template

    def get(self, template_id: str) -> Optional[Template]:
        return self._templates.get(template_id)

    def for_type(self, kind: OutputType) -> Optional[Template]:
        for t in self._templates.values():
            if t.type == kind:
                return t
        return None

    def all(self) -> List[Template]:
        return list(self._templates.values())

    def categories(self) -> List[OutputType]:
        seen: List[OutputType] = []
        for t in self._templates.values():
            if t.type not in seen:
                seen.append(t.type)
        return seen

    def __len__(self) -> int:
        return len(self._templates)
