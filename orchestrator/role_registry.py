from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from orchestrator import prompts

BUILTIN_TEMPLATES: dict[str, str] = {
    "analyst": prompts.ANALYST_TEMPLATE,
    "summarizer": prompts.SUMMARIZER_TEMPLATE,
    "fact_checker": prompts.FACT_CHECKER_TEMPLATE,
    "classifier": prompts.CLASSIFIER_TEMPLATE,
    "synthesizer": prompts.SYNTHESIZER_TEMPLATE,
}


@dataclass(frozen=True)
class AgentRole:
    """
    One role bound to one model.

    ``title`` names the job ("Analyst"); the user-facing ``display_name`` is
    derived from it and the bound model, so rebinding a role never leaves a
    stale model name in its progress messages.
    """

    name: str
    title: str
    provider: str
    model_id: str
    prompt_template: str
    start_message: str = "Starting"
    running_message: str = "Generating response"
    complete_message: str = "Complete"

    @property
    def display_name(self) -> str:
        return f"{self.title} ({self.model_id})"

    def render_prompt(self, query: str, context_block: str) -> str:
        return self.prompt_template.format(query=query, context=context_block)

    def message(self, text: str) -> str:
        return f"{self.display_name}: {text}"


def _default_title(name: str) -> str:
    """'fact_checker' -> 'Fact-Checker'."""
    return "-".join(part.capitalize() for part in name.split("_"))


def _default_roles() -> dict[str, AgentRole]:
    return {
        "analyst": AgentRole(
            name="analyst",
            title="Analyst",
            provider="openai",
            model_id="gpt-4o",
            prompt_template=prompts.ANALYST_TEMPLATE,
            start_message="Starting deep analysis",
            running_message="Generating deep analysis",
            complete_message="Analysis complete",
        ),
        "summarizer": AgentRole(
            name="summarizer",
            title="Summarizer",
            provider="openai",
            model_id="gpt-4o",
            prompt_template=prompts.SUMMARIZER_TEMPLATE,
            start_message="Starting summarization",
            running_message="Generating concise summary",
            complete_message="Summary complete",
        ),
        "fact_checker": AgentRole(
            name="fact_checker",
            title="Fact-Checker",
            provider="openai",
            model_id="gpt-4o-mini",
            prompt_template=prompts.FACT_CHECKER_TEMPLATE,
            start_message="Starting fact verification",
            running_message="Verifying claims",
            complete_message="Fact-checking complete",
        ),
        "classifier": AgentRole(
            name="classifier",
            title="Classifier",
            provider="openai",
            model_id="gpt-4o",
            prompt_template=prompts.CLASSIFIER_TEMPLATE,
            start_message="Starting classification",
            running_message="Categorizing topics",
            complete_message="Classification complete",
        ),
        "synthesizer": AgentRole(
            name="synthesizer",
            title="Synthesizer",
            provider="openai",
            model_id="gpt-4o",
            prompt_template=prompts.SYNTHESIZER_TEMPLATE,
            start_message="Starting synthesis of all agent responses",
            running_message="Synthesizing agent responses",
            complete_message="Final synthesis complete",
        ),
    }


@dataclass(frozen=True)
class RoleRegistry:
    """
    Immutable role -> model binding, passed into the pipeline at construction.

    ``dispatch_order`` fixes the fan-out order of the specialist roles, which is
    also the order their results reach the synthesizer.
    """

    _roles: Mapping[str, AgentRole]
    dispatch_order: tuple[str, ...]
    synthesizer_role: str = "synthesizer"
    _source: str = field(default="builtin", compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_roles", MappingProxyType(dict(self._roles)))
        unknown = [r for r in (*self.dispatch_order, self.synthesizer_role) if r not in self._roles]
        if unknown:
            raise ValueError(f"Role registry references undefined roles: {unknown}")
        if self.synthesizer_role in self.dispatch_order:
            raise ValueError("The synthesizer role cannot also be dispatched as a specialist")
        if not self.dispatch_order:
            raise ValueError("Role registry needs at least one specialist role")

    @classmethod
    def default(cls) -> "RoleRegistry":
        return cls(
            _roles=_default_roles(),
            dispatch_order=("analyst", "summarizer", "fact_checker", "classifier"),
        )

    @classmethod
    def from_yaml(cls, path: str | None = None) -> "RoleRegistry":
        registry_path = (
            Path(path)
            if path
            else Path(__file__).resolve().parent.parent / "config" / "agent_roles.yaml"
        )
        if not registry_path.exists():
            raise ValueError(f"Role registry not found at {registry_path}")

        data = yaml.safe_load(registry_path.read_text(encoding="utf-8"))
        return cls.from_dict(data, source=str(registry_path))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, source: str = "dict") -> "RoleRegistry":
        if not data or "roles" not in data:
            raise ValueError("Invalid role registry: missing roles")

        roles: dict[str, AgentRole] = {}
        for name, rdata in data["roles"].items():
            required = ["provider", "model"]
            if any(key not in rdata for key in required):
                raise ValueError(f"Missing required fields for role {name}")

            template = rdata.get("prompt")
            if template is None:
                template_name = rdata.get("template", name)
                if template_name not in BUILTIN_TEMPLATES:
                    raise ValueError(f"Role {name} has no prompt and no built-in template")
                template = BUILTIN_TEMPLATES[template_name]
            if "{query}" not in template or "{context}" not in template:
                raise ValueError(f"Prompt for role {name} must contain {{query}} and {{context}}")

            roles[name] = AgentRole(
                name=name,
                title=str(rdata.get("title") or _default_title(name)),
                provider=str(rdata["provider"]).lower(),
                model_id=str(rdata["model"]),
                prompt_template=template,
                start_message=rdata.get("start_message", "Starting"),
                running_message=rdata.get("running_message", "Generating response"),
                complete_message=rdata.get("complete_message", "Complete"),
            )

        synthesizer = data.get("synthesizer", "synthesizer")
        order = data.get("dispatch_order") or [r for r in roles if r != synthesizer]
        return cls(
            _roles=roles,
            dispatch_order=tuple(order),
            synthesizer_role=synthesizer,
            _source=source,
        )

    def get(self, name: str) -> AgentRole:
        try:
            return self._roles[name]
        except KeyError:
            raise ValueError(f"Unknown agent role: {name}") from None

    def specialists(self) -> list[AgentRole]:
        return [self._roles[name] for name in self.dispatch_order]

    def synthesizer(self) -> AgentRole:
        return self._roles[self.synthesizer_role]

    def providers(self) -> set[str]:
        return {role.provider for role in self._roles.values()}

    def with_model(self, role: str, model_id: str, provider: str | None = None) -> "RoleRegistry":
        """Return a copy with one role rebound to a different model."""
        current = self.get(role)
        roles = dict(self._roles)
        roles[role] = AgentRole(
            name=current.name,
            title=current.title,
            provider=provider or current.provider,
            model_id=model_id,
            prompt_template=current.prompt_template,
            start_message=current.start_message,
            running_message=current.running_message,
            complete_message=current.complete_message,
        )
        return RoleRegistry(
            _roles=roles,
            dispatch_order=self.dispatch_order,
            synthesizer_role=self.synthesizer_role,
            _source=self._source,
        )
