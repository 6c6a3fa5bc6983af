from __future__ import annotations

import json
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence

from openai import OpenAI

from deck_models import (
    BOM_CATEGORIES,
    CostEstimate,
    DeckSpecs,
    PlanData,
    SourceLink,
    bom_summary,
    cost_from_payload,
    plan_from_payload,
)
from planner_config import PlannerConfig

logger = logging.getLogger(__name__)

CHAT_SYSTEM_PROMPT = (
    "You are a professional Deck Building Expert. Give accurate building code and material advice. "
    "IMPORTANT: Do NOT use markdown for formatting. You MUST use <b>text</b> for bold and <i>text</i> for italics."
)


class PlannerServiceError(RuntimeError):
    pass


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "user" | "assistant"
    text: str


@dataclass(frozen=True)
class ProjectOutputs:
    plan: PlanData
    cost: Optional[CostEstimate]
    dream_deck_url: Optional[str]
    cost_error: Optional[str] = None


_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")


def _extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """
    Extract and parse the first JSON object found in a string (code fences allowed).
    """
    t = _FENCE_RE.sub("", (text or "").strip()).strip()
    if not t:
        return None
    try:
        if t.startswith("{") and t.endswith("}"):
            parsed = json.loads(t)
            return parsed if isinstance(parsed, dict) else None
    except ValueError:
        pass

    m = _JSON_OBJECT_RE.search(t)
    if not m:
        return None
    try:
        parsed = json.loads(m.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


_PLAN_CONTRACT: dict[str, Any] = {
    "type": "object",
    "required": ["bom", "tools", "steps"],
    "properties": {
        "bom": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["category", "item", "quantity"],
                "properties": {
                    "category": {"type": "string", "enum": list(BOM_CATEGORIES)},
                    "item": {"type": "string"},
                    "quantity": {"type": "string"},
                    "notes": {"type": "string"},
                },
            },
        },
        "tools": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["category", "tools"],
                "properties": {
                    "category": {"type": "string"},
                    "tools": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["name", "description"],
                            "properties": {"name": {"type": "string"}, "description": {"type": "string"}},
                        },
                    },
                },
            },
        },
        "steps": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["stepNumber", "title", "description", "timeEstimate"],
                "properties": {
                    "stepNumber": {"type": "number"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "timeEstimate": {"type": "string"},
                },
            },
        },
    },
}


def build_plan_prompt(specs: DeckSpecs) -> tuple[str, str]:
    system = (
        "Act as a professional US-based Architectural and Construction Planning AI.\n"
        "You MUST output ONLY a single JSON object (no markdown, no commentary).\n"
    )
    user = (
        f'Create a comprehensive construction plan for a residential deck named "{specs.project_name}".\n\n'
        "Specifications:\n"
        f"- Type: {specs.deck_type.value}\n"
        f"- Material: {specs.material.value}\n"
        f"- Dimensions: {specs.dimensions_label} above grade\n"
        f"- Location Context: {specs.zip_code}\n"
        f"- Use Case: {specs.function}\n"
        f"- Environment: {specs.environment}\n"
        f"- Future Expansion: {specs.expansion}\n"
        f"- Railing matches house trim: {'yes' if specs.railing_match else 'no'}\n\n"
        "You MUST generate:\n"
        "1. A complete Bill of Materials (BOM) categorized by Framing, Decking, Hardware, and Waterproofing.\n"
        '2. A list of required tools for a DIY enthusiast, including a brief "description" for each tool.\n'
        "3. A detailed Step-by-Step Execution Plan (5-8 major steps).\n\n"
        "Return JSON with shape:\n"
        f"{json.dumps(_PLAN_CONTRACT, indent=2)}\n"
    )
    return system, user


def build_cost_prompt(specs: DeckSpecs, summary: str) -> str:
    return (
        f"I need a current, real-time cost estimate for a deck project in {specs.zip_code}, USA.\n\n"
        "CRITICAL: YOU MUST PROVIDE A PRICING BREAKDOWN FOR EVERY SINGLE ITEM IN THIS LIST:\n"
        f"{summary}\n\n"
        "Instructions:\n"
        f"1. Search for current retail prices for each item from Home Depot, Lowe's, and local lumber yards within 10 miles of {specs.zip_code}.\n"
        f"2. Verify at least 3 local supplier locations near {specs.zip_code}.\n"
        '3. Do not summarize items. List every piece of hardware, framing, and decking individually in the JSON "breakdown".\n\n'
        "Return a valid JSON string (no markdown):\n"
        "{\n"
        '  "materialTotal": "string (Total of all items)",\n'
        '  "laborTotal": "string (Local pro rate estimate)",\n'
        '  "permitFees": "string (Est. for this region)",\n'
        '  "contingency": "string (15%)",\n'
        '  "breakdown": [\n'
        '     { "item": "string", "quantity": "string", "unitPrice": "string", "totalPrice": "string" }\n'
        "  ]\n"
        "}\n"
    )


def build_step_image_prompt(description: str, deck_type: str, context: str, size: str) -> str:
    return (
        f"Architectural technical drawing of {description} for a {size} {deck_type}. "
        f"High contrast black and white lines. {context}. No people."
    )


def build_dream_deck_prompt(specs: DeckSpecs) -> str:
    return (
        f"High-end architectural photograph of a {specs.material.value} {specs.deck_type.value}, "
        f"{specs.length_ft:g}x{specs.width_ft:g}ft. Golden hour lighting, luxury backyard setting."
    )


class DeckPlannerClient:
    """
    Thin wrapper over the OpenAI SDK for the planner's requests.

    `client` can be injected (tests pass a fake with the same `responses`/`images` surface).
    """

    def __init__(self, config: PlannerConfig, *, client: Optional[Any] = None) -> None:
        self._config = config
        if client is None:
            if not config.openai_api_key:
                raise PlannerServiceError("Missing OPENAI_API_KEY (set it in .env or Streamlit secrets)")
            client = OpenAI(api_key=config.openai_api_key, timeout=config.request_timeout_s)
        self._client = client

    def generate_deck_plan(self, specs: DeckSpecs) -> PlanData:
        system, user = build_plan_prompt(specs)
        text = self._respond(
            model=self._config.plan_model,
            input=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
        )
        payload = _extract_json_object(text)
        if payload is None:
            raise PlannerServiceError("Failed to generate plan: response was not a JSON object")
        return plan_from_payload(payload)

    def estimate_deck_cost(self, specs: DeckSpecs, summary: str) -> CostEstimate:
        try:
            resp = self._client.responses.create(
                model=self._config.cost_model,
                tools=[{"type": "web_search"}],
                input=build_cost_prompt(specs, summary),
            )
        except Exception as exc:
            raise PlannerServiceError(f"Failed to estimate costs: {exc}") from exc

        text = _output_text(resp)
        if not text:
            raise PlannerServiceError("Failed to estimate costs: empty response")
        sources = _url_citations(resp)
        payload = _extract_json_object(text)
        if payload is None:
            logger.warning("cost response was not JSON; using placeholder estimate")
            return CostEstimate(
                material_total="Error",
                labor_total="Error",
                permit_fees="Error",
                contingency="15%",
                breakdown=(),
                sources=tuple(sources),
            )
        return cost_from_payload(payload, sources=sources)

    def chat_with_assistant(self, history: Sequence[ChatMessage], message: str) -> str:
        messages: list[dict[str, str]] = [{"role": m.role, "content": m.text} for m in history]
        messages.append({"role": "user", "content": message})
        return self._respond(model=self._config.chat_model, instructions=CHAT_SYSTEM_PROMPT, input=messages)

    def generate_step_image(self, description: str, deck_type: str, context: str, size: str = "Custom Size") -> Optional[str]:
        return self._image(build_step_image_prompt(description, deck_type, context, size))

    def generate_dream_deck_image(self, specs: DeckSpecs) -> Optional[str]:
        return self._image(build_dream_deck_prompt(specs))

    def generate_project_outputs(self, specs: DeckSpecs) -> ProjectOutputs:
        """
        Hero image in the background; plan then cost in the foreground.

        A failed image or cost request is logged and tolerated; a failed plan raises.
        """
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="dream-deck") as pool:
            image_future = pool.submit(self.generate_dream_deck_image, specs)
            plan = self.generate_deck_plan(specs)

            cost: Optional[CostEstimate] = None
            cost_error: Optional[str] = None
            try:
                cost = self.estimate_deck_cost(specs, bom_summary(plan))
            except PlannerServiceError as exc:
                logger.error("cost estimate failed: %s", exc)
                cost_error = str(exc)

            try:
                dream_url = image_future.result()
            except PlannerServiceError as exc:
                logger.error("dream deck generation failed: %s", exc)
                dream_url = None

        return ProjectOutputs(plan=plan, cost=cost, dream_deck_url=dream_url, cost_error=cost_error)

    def _respond(self, **kwargs: Any) -> str:
        try:
            resp = self._client.responses.create(**kwargs)
        except Exception as exc:
            raise PlannerServiceError(f"Model request failed: {exc}") from exc
        text = _output_text(resp)
        if not text:
            raise PlannerServiceError("Model returned an empty response")
        return text

    def _image(self, prompt: str) -> Optional[str]:
        try:
            resp = self._client.images.generate(model=self._config.image_model, prompt=prompt, size="1536x1024")
        except Exception as exc:
            raise PlannerServiceError(f"Image generation failed: {exc}") from exc
        data = getattr(resp, "data", None) or []
        for item in data:
            b64 = getattr(item, "b64_json", None)
            if b64:
                return f"data:image/png;base64,{b64}"
        return None


def _output_text(resp: Any) -> str:
    text = getattr(resp, "output_text", None)
    if isinstance(text, str):
        return text.strip()
    return ""


def _url_citations(resp: Any) -> list[SourceLink]:
    """
    Collect `url_citation` annotations from a Responses API result, de-duplicated by URL.
    """
    out: list[SourceLink] = []
    seen: set[str] = set()
    for item in getattr(resp, "output", None) or []:
        for part in getattr(item, "content", None) or []:
            for ann in getattr(part, "annotations", None) or []:
                if _attr(ann, "type") != "url_citation":
                    continue
                uri = str(_attr(ann, "url") or "").strip()
                if not uri or uri in seen:
                    continue
                seen.add(uri)
                title = str(_attr(ann, "title") or "").strip() or "Location/Source"
                out.append(SourceLink(title=title, uri=uri))
    return out


def _attr(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)
