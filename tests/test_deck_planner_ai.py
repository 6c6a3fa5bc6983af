from __future__ import annotations

import json
import unittest
from types import SimpleNamespace
from typing import Any, Optional

from deck_planner_ai import (
    ChatMessage,
    DeckPlannerClient,
    PlannerServiceError,
    _extract_json_object,
    build_cost_prompt,
    build_plan_prompt,
)
from planner_config import PlannerConfig
from sample_deck_plan import sample_specs

PLAN_JSON = {
    "bom": [
        {"category": "Framing", "item": "2x10 joists", "quantity": "13", "notes": "16in OC"},
        {"category": "Hardware", "item": "Joist hangers", "quantity": "26"},
    ],
    "tools": [{"category": "Cutting", "tools": [{"name": "Circular saw", "description": "Cross-cuts"}]}],
    "steps": [{"stepNumber": 1, "title": "Layout", "description": "Stake it out", "timeEstimate": "1 day"}],
}

COST_JSON = {
    "materialTotal": "$2,948",
    "laborTotal": "$4,200",
    "permitFees": "$350",
    "contingency": "$1,125",
    "breakdown": [{"item": "2x10 joists", "quantity": "13", "unitPrice": "$24.98", "totalPrice": "$324.74"}],
}


def _citation(url: str, title: Optional[str] = None) -> SimpleNamespace:
    return SimpleNamespace(type="url_citation", url=url, title=title)


class _FakeResponses:
    def __init__(self, *, plan_text: str, cost_text: str, chat_text: str = "Use <b>joist tape</b>.", cost_exc: Optional[Exception] = None) -> None:
        self.plan_text = plan_text
        self.cost_text = cost_text
        self.chat_text = chat_text
        self.cost_exc = cost_exc
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if "tools" in kwargs:
            if self.cost_exc is not None:
                raise self.cost_exc
            annotations = [
                _citation("https://www.homedepot.com/p/1", "Home Depot"),
                _citation("https://www.homedepot.com/p/1", "Home Depot (dupe)"),
                {"type": "url_citation", "url": "https://www.lowes.com/", "title": ""},
                {"type": "file_citation", "file_id": "f_1"},
            ]
            output = [SimpleNamespace(content=[SimpleNamespace(annotations=annotations)])]
            return SimpleNamespace(output_text=self.cost_text, output=output)
        if "instructions" in kwargs:
            return SimpleNamespace(output_text=self.chat_text, output=[])
        return SimpleNamespace(output_text=self.plan_text, output=[])


class _FakeImages:
    def __init__(self, *, b64: Optional[str] = "aW1n", exc: Optional[Exception] = None) -> None:
        self.b64 = b64
        self.exc = exc
        self.calls: list[dict[str, Any]] = []

    def generate(self, **kwargs: Any) -> SimpleNamespace:
        self.calls.append(kwargs)
        if self.exc is not None:
            raise self.exc
        return SimpleNamespace(data=[SimpleNamespace(b64_json=self.b64)])


def _client(
    *,
    plan_text: str = json.dumps(PLAN_JSON),
    cost_text: str = json.dumps(COST_JSON),
    cost_exc: Optional[Exception] = None,
    image_exc: Optional[Exception] = None,
) -> tuple[DeckPlannerClient, SimpleNamespace]:
    fake = SimpleNamespace(
        responses=_FakeResponses(plan_text=plan_text, cost_text=cost_text, cost_exc=cost_exc),
        images=_FakeImages(exc=image_exc),
    )
    return DeckPlannerClient(PlannerConfig(openai_api_key=None), client=fake), fake


class TestExtractJsonObject(unittest.TestCase):
    def test_plain_and_fenced_json(self) -> None:
        self.assertEqual(_extract_json_object('{"a": 1}'), {"a": 1})
        self.assertEqual(_extract_json_object('```json\n{"a": 1}\n```'), {"a": 1})
        self.assertEqual(_extract_json_object('Here you go: {"a": {"b": 2}} thanks'), {"a": {"b": 2}})

    def test_non_objects_return_none(self) -> None:
        self.assertIsNone(_extract_json_object(""))
        self.assertIsNone(_extract_json_object("no json here"))
        self.assertIsNone(_extract_json_object("[1, 2]"))


class TestPrompts(unittest.TestCase):
    def test_plan_prompt_mentions_specs(self) -> None:
        system, user = build_plan_prompt(sample_specs())
        self.assertIn("JSON", system)
        self.assertIn('"Backyard Retreat"', user)
        self.assertIn("Composite Boards", user)
        self.assertIn("97205", user)
        self.assertIn("timeEstimate", user)

    def test_cost_prompt_lists_items(self) -> None:
        prompt = build_cost_prompt(sample_specs(), "- [Framing] 13 x joists")
        self.assertIn("97205", prompt)
        self.assertIn("- [Framing] 13 x joists", prompt)


class TestDeckPlannerClient(unittest.TestCase):
    def test_missing_key_without_client_raises(self) -> None:
        with self.assertRaises(PlannerServiceError):
            DeckPlannerClient(PlannerConfig(openai_api_key=None))

    def test_generate_deck_plan(self) -> None:
        client, fake = _client()
        plan = client.generate_deck_plan(sample_specs())
        self.assertEqual(len(plan.bom), 2)
        self.assertEqual(plan.tools[0].tools[0].name, "Circular saw")
        self.assertEqual(fake.responses.calls[0]["model"], "gpt-5")

    def test_plan_that_is_not_json_raises(self) -> None:
        client, _ = _client(plan_text="Sorry, I can't help with that.")
        with self.assertRaises(PlannerServiceError):
            client.generate_deck_plan(sample_specs())

    def test_estimate_deck_cost_collects_sources(self) -> None:
        client, fake = _client()
        cost = client.estimate_deck_cost(sample_specs(), "- [Framing] 13 x 2x10 joists")
        self.assertEqual(cost.material_total, "$2,948")
        self.assertEqual(len(cost.breakdown), 1)
        self.assertEqual(
            [(s.title, s.uri) for s in cost.sources],
            [("Home Depot", "https://www.homedepot.com/p/1"), ("Location/Source", "https://www.lowes.com/")],
        )
        self.assertEqual(fake.responses.calls[0]["tools"], [{"type": "web_search"}])

    def test_non_json_cost_falls_back_to_placeholder(self) -> None:
        client, _ = _client(cost_text="Prices vary a lot in your area.")
        cost = client.estimate_deck_cost(sample_specs(), "")
        self.assertEqual(cost.material_total, "Error")
        self.assertEqual(cost.contingency, "15%")
        self.assertEqual(cost.breakdown, ())
        self.assertEqual(len(cost.sources), 2)

    def test_chat_sends_history_and_instructions(self) -> None:
        client, fake = _client()
        history = [ChatMessage("user", "Hi"), ChatMessage("assistant", "Hello!")]
        reply = client.chat_with_assistant(history, "How far apart are joists?")
        self.assertEqual(reply, "Use <b>joist tape</b>.")
        call = fake.responses.calls[0]
        self.assertIn("Deck Building Expert", call["instructions"])
        self.assertEqual([m["role"] for m in call["input"]], ["user", "assistant", "user"])
        self.assertEqual(call["input"][-1]["content"], "How far apart are joists?")

    def test_images_are_returned_as_data_urls(self) -> None:
        client, fake = _client()
        url = client.generate_step_image("ledger flashing", "Attached Deck", "Composite", "16x12")
        self.assertEqual(url, "data:image/png;base64,aW1n")
        self.assertIn("ledger flashing", fake.images.calls[0]["prompt"])
        self.assertEqual(fake.images.calls[0]["model"], "gpt-image-1")

    def test_project_outputs_tolerate_cost_and_image_failures(self) -> None:
        client, _ = _client(cost_exc=RuntimeError("search down"), image_exc=RuntimeError("quota"))
        outputs = client.generate_project_outputs(sample_specs())
        self.assertEqual(len(outputs.plan.steps), 1)
        self.assertIsNone(outputs.cost)
        self.assertIn("search down", outputs.cost_error)
        self.assertIsNone(outputs.dream_deck_url)

    def test_project_outputs_happy_path(self) -> None:
        client, _ = _client()
        outputs = client.generate_project_outputs(sample_specs())
        self.assertIsNotNone(outputs.cost)
        self.assertIsNone(outputs.cost_error)
        self.assertEqual(outputs.dream_deck_url, "data:image/png;base64,aW1n")

    def test_plan_failure_propagates(self) -> None:
        client, _ = _client(plan_text="not json")
        with self.assertRaises(PlannerServiceError):
            client.generate_project_outputs(sample_specs())


if __name__ == "__main__":
    unittest.main()
