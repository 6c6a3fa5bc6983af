from __future__ import annotations

import unittest
from dataclasses import replace

import deck_planner_app
from deck_models import DeckType, MaterialType, SpecsError
from plan_pdf import DocumentExportError, PlanExporter
from sample_deck_plan import sample_plan_content


def _state_with_plan() -> dict[str, object]:
    content = sample_plan_content()
    return {
        "specs": content.specs,
        "plan": content.plan,
        "cost": content.cost,
        "step_images": {},
        "dream_deck_url": None,
    }


class _FailingExporter(PlanExporter):
    def export(self, content, *, hero_image_url=None, generated_at=None):  # type: ignore[override]
        raise DocumentExportError("Failed to generate PDF: boom")


class TestSpecsFromForm(unittest.TestCase):
    def test_form_values_become_specs(self) -> None:
        specs = deck_planner_app._specs_from_form(
            {
                "project_name": "  Lake House ",
                "length_ft": 20,
                "width_ft": 14,
                "height_ft": 6,
                "zip_code": "55401",
                "address": "",
                "deck_type": DeckType.WRAP_AROUND.value,
                "material": MaterialType.CEDAR.value,
                "function": "Entertaining",
                "environment": "Cold winters",
                "expansion": "",
                "railing_match": True,
            }
        )
        self.assertEqual(specs.project_name, "Lake House")
        self.assertEqual(specs.deck_type, DeckType.WRAP_AROUND)
        self.assertEqual(specs.material, MaterialType.CEDAR)
        self.assertIsNone(specs.address)
        self.assertEqual(specs.expansion, "None")
        self.assertTrue(specs.railing_match)

    def test_missing_project_name_is_rejected(self) -> None:
        with self.assertRaises(SpecsError):
            deck_planner_app._specs_from_form({"project_name": "", "length_ft": 12, "width_ft": 12, "zip_code": "55401"})


class TestViewState(unittest.TestCase):
    def test_all_means_no_filter(self) -> None:
        vs = deck_planner_app._view_state_from_session({"bom_filter": "All", "open_step": 2})
        self.assertIsNone(vs.bom_category)
        self.assertEqual(vs.open_step, 2)
        self.assertFalse(vs.show_cost_breakdown)

    def test_category_and_breakdown_flags(self) -> None:
        vs = deck_planner_app._view_state_from_session({"bom_filter": "Hardware", "show_cost_breakdown": True})
        self.assertEqual(vs.bom_category, "Hardware")
        self.assertIsNone(vs.open_step)
        self.assertTrue(vs.show_cost_breakdown)


class TestSupplierCard(unittest.TestCase):
    def test_map_searches_lumber_stores_near_zip(self) -> None:
        url = deck_planner_app._supplier_map_url(" 97205 ")
        self.assertEqual(url, "https://www.google.com/maps?q=lumber+stores+near+97205&output=embed")

    def test_map_query_is_url_encoded(self) -> None:
        url = deck_planner_app._supplier_map_url("97205&x=1")
        self.assertIn("97205%26x%3D1", url)
        self.assertTrue(url.endswith("&output=embed"))

    def test_sources_listed_under_map(self) -> None:
        content = sample_plan_content()
        lines = deck_planner_app._supplier_source_lines(content)
        self.assertEqual(len(lines), len(content.cost.sources))
        self.assertEqual(lines[0], "- [Home Depot - Composite Decking](https://www.homedepot.com/)")

    def test_placeholder_without_sources(self) -> None:
        content = sample_plan_content()
        no_sources = replace(content, cost=replace(content.cost, sources=()))
        self.assertEqual(deck_planner_app._supplier_source_lines(no_sources), ["_Finding local suppliers..._"])
        self.assertEqual(deck_planner_app._supplier_source_lines(replace(content, cost=None)), ["_Finding local suppliers..._"])


class TestExportState(unittest.TestCase):
    def test_export_needs_a_plan_and_idle_state(self) -> None:
        state = _state_with_plan()
        self.assertTrue(deck_planner_app._export_enabled(state))
        self.assertFalse(deck_planner_app._export_enabled({**state, "plan": None}))
        self.assertFalse(deck_planner_app._export_enabled({**state, "generating": True}))
        self.assertFalse(deck_planner_app._export_enabled({**state, "export_in_flight": True}))

    def test_run_export_stores_pdf(self) -> None:
        state = _state_with_plan()
        deck_planner_app._run_export(state, PlanExporter())
        self.assertIsNone(state["export_pdf_error"])
        self.assertTrue(bytes(state["export_pdf_bytes"]).startswith(b"%PDF"))
        self.assertEqual(state["export_pdf_filename"], "DeckMaster_Plan_Backyard_Retreat.pdf")
        self.assertFalse(state["export_in_flight"])

    def test_failed_export_keeps_no_bytes(self) -> None:
        state = _state_with_plan()
        deck_planner_app._run_export(state, _FailingExporter())
        self.assertIsNone(state["export_pdf_bytes"])
        self.assertIn("boom", state["export_pdf_error"])
        self.assertFalse(state["export_in_flight"])

    def test_export_without_specs_reports_error(self) -> None:
        state: dict[str, object] = {}
        deck_planner_app._run_export(state, PlanExporter())
        self.assertTrue(state["export_pdf_error"])
        self.assertNotIn("export_pdf_bytes", state)

    def test_reset_clears_outputs(self) -> None:
        state = {**_state_with_plan(), "open_step": 3, "bom_filter": "Decking", "step_images": {1: "data:"}}
        deck_planner_app._reset_outputs(state)
        self.assertIsNone(state["plan"])
        self.assertIsNone(state["cost"])
        self.assertEqual(state["step_images"], {})
        self.assertEqual(state["bom_filter"], "All")
        self.assertNotIn("open_step", state)


if __name__ == "__main__":
    unittest.main()
