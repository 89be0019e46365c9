"""
Output formatter.

Turns a validated OutputRequest into a FormattedOutput: picks a template,
merges the payload into its skeleton, applies the requested encoding and
compression marker, derives the single execution command for the output
kind and assigns a priority.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from datetime import datetime

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import (
    Command,
    DeliveryInfo,
    Execution,
    FormatSpec,
    FormattedOutput,
    OutputMetadata,
    OutputRequest,
    OutputType,
    Priority,
    Template,
)
from .templates import TemplateRegistry, default_template
from .utils import generate_output_id, payload_size, to_json, utc_now

Encoder = Callable[[Any], Any]

# Declarative marker only; no real codec is applied.
COMPRESSION_RATIO = 0.7

# kind -> (command type, honours timing.delay, validation tag)
COMMAND_TABLE: Dict[OutputType, tuple[str, bool, str]] = {
    OutputType.ACTION: ("execute_action", True, "action_completed"),
    OutputType.RESPONSE: ("send_response", False, "response_acknowledged"),
    OutputType.SIGNAL: ("emit_signal", True, "signal_received"),
    OutputType.FEEDBACK: ("provide_feedback", False, "feedback_processed"),
    OutputType.ADAPTATION: ("apply_adaptation", True, "adaptation_applied"),
}


def _encode_json(data: Any) -> str:
    return to_json(data)


def _encode_binary(data: Any) -> bytes:
    return to_json(data).encode("utf-8")


DEFAULT_ENCODERS: Dict[str, Encoder] = {
    "json": _encode_json,
    "binary": _encode_binary,
}


def parse_request(raw: Union[OutputRequest, Mapping[str, Any]]) -> OutputRequest:
    """Validate a raw request, re-raising pydantic failures as ValidationError."""
    if isinstance(raw, OutputRequest):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError(f"request must be a mapping, got {type(raw).__name__}")
    try:
        return OutputRequest.model_validate(dict(raw))
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(f"invalid output request: {problems}") from exc


def _slot(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return value[2:-1]
    return None


def _resolve(structure: Mapping[str, Any], payload: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in structure.items():
        name = key if value is None else _slot(value)
        if name is not None:
            found = payload.get(name)
            out[key] = "" if found is None else found
        elif isinstance(value, Mapping):
            out[key] = _resolve(value, payload)
        else:
            out[key] = value
    return out


def apply_structure(payload: Mapping[str, Any], structure: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``payload`` into a template skeleton.

    ``None`` values and ``"${name}"`` strings are slots filled by direct field
    lookup (unresolved slots become ``""``); nested mappings recurse and the
    payload's own fields are overlaid last. A string ``wrapper`` key wraps the
    payload instead.
    """
    wrapper = structure.get("wrapper")
    if isinstance(wrapper, str) and wrapper:
        return {wrapper: dict(payload)}
    return {**_resolve(structure, payload), **payload}


def calculate_priority(request: OutputRequest) -> Priority:
    if request.timing.immediate:
        return Priority.CRITICAL
    if request.output_type == OutputType.ACTION:
        return Priority.HIGH
    if request.output_type == OutputType.RESPONSE:
        return Priority.MEDIUM
    return Priority.LOW


class OutputFormatter:
    """Builds FormattedOutput records from output requests.

    Extra encodings can be plugged in through ``encoders`` (name -> callable);
    unknown encodings pass the structured payload through unchanged.
    """

    def __init__(
        self,
        templates: Optional[TemplateRegistry] = None,
        *,
        encoders: Optional[Mapping[str, Encoder]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.templates = templates or TemplateRegistry()
        self._encoders: Dict[str, Encoder] = {**DEFAULT_ENCODERS, **(encoders or {})}
        self._clock = clock

    def register_encoder(self, name: str, encoder: Encoder) -> None:
        self._encoders[name] = encoder

    def select_template(self, kind: OutputType, now: Optional[datetime] = None) -> Template:
        template = self.templates.for_type(kind)
        if template is None:
            template = default_template(kind, now or self._clock())
            logger.debug(f"No template for {kind.value}; using {template.id}")
        return template

    def apply_formatting(
        self, payload: Mapping[str, Any], template: Template, fmt: FormatSpec
    ) -> Any:
        formatted: Any = dict(payload)
        if template.structure:
            formatted = apply_structure(formatted, template.structure)

        encoder = self._encoders.get(fmt.encoding)
        if encoder is not None:
            formatted = encoder(formatted)

        if fmt.compression:
            formatted = {"compressed": True, "data": formatted, "ratio": COMPRESSION_RATIO}
        return formatted

    def build_commands(self, request: OutputRequest, data: Any) -> List[Command]:
        cmd_type, uses_delay, tag = COMMAND_TABLE[request.output_type]
        timing = (request.timing.delay or 0) if uses_delay else 0
        return [Command(type=cmd_type, data=data, timing=timing, validation=tag)]

    def format(
        self,
        request: Union[OutputRequest, Mapping[str, Any]],
        *,
        output_id: Optional[str] = None,
    ) -> FormattedOutput:
        req = parse_request(request)
        now = self._clock()
        template = self.select_template(req.output_type, now)
        data = self.apply_formatting(req.behavior_data, template, req.format)

        return FormattedOutput(
            id=output_id or generate_output_id(),
            request=req,
            formatted_data=data,
            delivery_info=DeliveryInfo(
                method=req.delivery_method,
                target=req.target.identifier,
                protocol=req.target.protocol,
                timestamp=now,
            ),
            execution=Execution(
                commands=self.build_commands(req, data),
                coordination=req.coordination,
            ),
            metadata=OutputMetadata(
                size=payload_size(data),
                priority=calculate_priority(req),
                template_id=template.id,
                validation=list(template.validation),
            ),
        )
