from __future__ import annotations

import logging
import os
from typing import Any, Mapping, MutableMapping, Optional
from urllib.parse import quote_plus

import streamlit as st
import streamlit.components.v1 as components

from deck_models import (
    BOM_CATEGORIES,
    DeckSpecs,
    DeckType,
    MaterialType,
    PlanContent,
    SpecsError,
    validate_specs,
)
from deck_planner_ai import ChatMessage, DeckPlannerClient, PlannerServiceError
from plan_pdf import DocumentExportError, PlanExporter
from planner_config import PlannerConfig, configure_logging, load_config_from_env, load_dotenv_file
from section_views import RenderMode, SectionId, SectionViewState, capture_png_bytes

logger = logging.getLogger(__name__)

DECK_TYPE_INFO = {
    DeckType.ATTACHED: "Connected directly to the house structure using a ledger board. Most common for main-level access.",
    DeckType.DETACHED: "A free-standing structure not physically connected to the house. Great for garden retreats.",
    DeckType.MULTI_LEVEL: "Connected platforms at different heights, often linked by stairs. Ideal for sloped yards.",
    DeckType.WRAP_AROUND: "Encircles multiple sides of a house. Provides massive deck area and multiple access points.",
    DeckType.POOL: "Designed to surround an above-ground or in-ground pool. Requires specialized slip-resistant materials.",
    DeckType.ROOFTOP: "Built on top of a flat roof or garage. Requires expert load-bearing verification.",
}

_CHAT_ERROR_TEXT = "Sorry, I'm having trouble connecting right now."
_FINDING_SUPPLIERS_TEXT = "_Finding local suppliers..._"
_SUPPLIER_MAP_HEIGHT_PX = 256


def _read_secret_or_env_str(key: str) -> str:
    """
    Read a configuration value from Streamlit Secrets (preferred) or environment variables.

    Returns a stripped string; returns "" when missing.
    """
    val: object = ""
    try:
        # `st.secrets` is Mapping-like; `.get` is supported in Streamlit.
        val = st.secrets.get(key, "")  # type: ignore[attr-defined]
    except Exception:
        val = ""
    if not val:
        val = os.environ.get(key, "")
    if isinstance(val, str):
        return val.strip()
    return str(val).strip() if val is not None else ""


def _sync_env_from_secrets() -> None:
    """
    Mirror Streamlit secrets into environment variables so `planner_config` stays Streamlit-free.
    """
    for key in (
        "OPENAI_API_KEY",
        "OPENAI_PLAN_MODEL",
        "OPENAI_COST_MODEL",
        "OPENAI_CHAT_MODEL",
        "OPENAI_IMAGE_MODEL",
        "PLANNER_TIMEOUT_S",
        "PLANNER_LOG_LEVEL",
    ):
        val = _read_secret_or_env_str(key)
        if val:
            os.environ[key] = val


def _load_config() -> PlannerConfig:
    load_dotenv_file()
    _sync_env_from_secrets()
    cfg = load_config_from_env()
    configure_logging(cfg.log_level)
    return cfg


def _specs_from_form(values: Mapping[str, Any]) -> DeckSpecs:
    """
    Build and validate specs from raw form values; raises `SpecsError` with a user-facing message.
    """
    address = str(values.get("address") or "").strip()
    return validate_specs(
        DeckSpecs(
            project_name=str(values.get("project_name") or "").strip(),
            length_ft=float(values.get("length_ft") or 0),
            width_ft=float(values.get("width_ft") or 0),
            height_ft=float(values.get("height_ft") or 0),
            zip_code=str(values.get("zip_code") or "").strip(),
            deck_type=DeckType(values.get("deck_type") or DeckType.ATTACHED.value),
            material=MaterialType(values.get("material") or MaterialType.PRESSURE_TREATED.value),
            function=str(values.get("function") or "").strip(),
            expansion=str(values.get("expansion") or "").strip() or "None",
            environment=str(values.get("environment") or "").strip(),
            address=address or None,
            railing_match=bool(values.get("railing_match")),
        )
    )


def _view_state_from_session(state: Mapping[str, Any]) -> SectionViewState:
    category = str(state.get("bom_filter") or "All")
    open_step = state.get("open_step")
    return SectionViewState(
        bom_category=None if category == "All" else category,
        open_step=int(open_step) if isinstance(open_step, int) else None,
        show_cost_breakdown=bool(state.get("show_cost_breakdown")),
    )


def _plan_content_from_state(state: Mapping[str, Any]) -> Optional[PlanContent]:
    specs = state.get("specs")
    if not isinstance(specs, DeckSpecs):
        return None
    return PlanContent(
        specs=specs,
        plan=state.get("plan"),
        cost=state.get("cost"),
        step_images=dict(state.get("step_images") or {}),
    )


def _export_enabled(state: Mapping[str, Any]) -> bool:
    return (
        state.get("plan") is not None
        and not bool(state.get("generating"))
        and not bool(state.get("export_in_flight"))
    )


def _run_export(state: MutableMapping[str, Any], exporter: PlanExporter) -> None:
    """
    Export the current content; stores bytes + filename, or an error message, in `state`.
    """
    content = _plan_content_from_state(state)
    if content is None:
        state["export_pdf_error"] = "Generate a plan before downloading."
        return
    state["export_in_flight"] = True
    state["export_pdf_bytes"] = None
    state["export_pdf_error"] = None
    try:
        artifact = exporter.export(content, hero_image_url=state.get("dream_deck_url"))
        state["export_pdf_bytes"] = artifact.pdf_bytes
        state["export_pdf_filename"] = artifact.filename
    except DocumentExportError as exc:
        state["export_pdf_error"] = str(exc)
    finally:
        state["export_in_flight"] = False


def _reset_outputs(state: MutableMapping[str, Any]) -> None:
    for key in ("plan", "cost", "cost_error", "dream_deck_url", "export_pdf_bytes", "export_pdf_error"):
        state[key] = None
    state["step_images"] = {}
    state["bom_filter"] = "All"
    # Radio options change with every plan; drop the stale selection.
    state.pop("open_step", None)


def _get_exporter(cfg: PlannerConfig) -> PlanExporter:
    exporter = st.session_state.get("exporter")
    if not isinstance(exporter, PlanExporter):
        exporter = PlanExporter(
            scale=cfg.capture_scale,
            background=cfg.capture_background,
            hero_image_timeout_s=cfg.hero_image_timeout_s,
        )
        st.session_state["exporter"] = exporter
    return exporter


def _get_client(cfg: PlannerConfig) -> Optional[DeckPlannerClient]:
    if not cfg.ai_enabled:
        return None
    client = st.session_state.get("planner_client")
    if not isinstance(client, DeckPlannerClient):
        client = DeckPlannerClient(cfg)
        st.session_state["planner_client"] = client
    return client


def _render_input_form(client: Optional[DeckPlannerClient]) -> None:
    with st.expander("Structural design explainer", expanded=False):
        for deck_type, desc in DECK_TYPE_INFO.items():
            st.markdown(f"**{deck_type.value}**: {desc}")

    with st.form("specs_form", clear_on_submit=False):
        values: dict[str, Any] = {}
        values["project_name"] = st.text_input("Project Name", placeholder="Backyard Retreat")
        c1, c2, c3 = st.columns(3)
        values["length_ft"] = c1.number_input("Length (ft)", min_value=1, max_value=200, value=12)
        values["width_ft"] = c2.number_input("Width (ft)", min_value=1, max_value=200, value=12)
        values["height_ft"] = c3.number_input("Height above grade (ft)", min_value=0, max_value=40, value=2)
        c4, c5 = st.columns(2)
        values["zip_code"] = c4.text_input("Zip Code")
        values["address"] = c5.text_input("Address (optional)")
        values["deck_type"] = st.selectbox("Deck Type", [t.value for t in DeckType])
        values["material"] = st.selectbox("Material", [m.value for m in MaterialType])
        values["function"] = st.text_input("Primary Function", value="Dining and Lounging")
        values["environment"] = st.text_input("Environment", value="Four seasons, moderate rain")
        values["expansion"] = st.text_input("Future Expansion", value="None")
        values["railing_match"] = st.checkbox("Match railing to house trim")
        submitted = st.form_submit_button(
            "Generate Plan",
            disabled=client is None or bool(st.session_state.get("generating")),
            use_container_width=True,
        )

    if client is None:
        st.info("Set OPENAI_API_KEY to generate plans.")
    if not submitted or client is None:
        return

    try:
        specs = _specs_from_form(values)
    except SpecsError as exc:
        st.error(str(exc))
        return

    _reset_outputs(st.session_state)
    st.session_state["specs"] = specs
    st.session_state["generating"] = True
    try:
        with st.spinner("Drafting plan, materials and local pricing..."):
            outputs = client.generate_project_outputs(specs)
        st.session_state["plan"] = outputs.plan
        st.session_state["cost"] = outputs.cost
        st.session_state["cost_error"] = outputs.cost_error
        st.session_state["dream_deck_url"] = outputs.dream_deck_url
        if outputs.plan.steps:
            st.session_state["open_step"] = outputs.plan.steps[0].step_number
    except (PlannerServiceError, ValueError) as exc:
        logger.error("plan generation failed: %s", exc)
        st.error("There was an error generating your deck plan. Please check your connection and try again.")
    finally:
        st.session_state["generating"] = False


def _render_outputs(client: Optional[DeckPlannerClient]) -> None:
    content = _plan_content_from_state(st.session_state)
    if content is None or content.plan is None:
        return

    dream_url = st.session_state.get("dream_deck_url")
    if dream_url:
        st.image(dream_url, caption="Your dream deck", use_container_width=True)

    categories = ["All"] + [c for c in BOM_CATEGORIES if any(i.category == c for i in content.plan.bom)]
    st.selectbox("Filter materials", categories, key="bom_filter")
    view_state = _view_state_from_session(st.session_state)
    _show_section(content, SectionId.MATERIALS, view_state)
    _show_section(content, SectionId.TOOLS, view_state)

    step_numbers = [s.step_number for s in content.plan.steps]
    if step_numbers:
        st.radio("Open step", step_numbers, key="open_step", horizontal=True)
        view_state = _view_state_from_session(st.session_state)
        _render_step_image_button(client, content)
    _show_section(content, SectionId.STEPS, view_state)

    if content.cost is None:
        err = st.session_state.get("cost_error")
        if err:
            st.warning(f"Cost estimate unavailable: {err}")
    else:
        st.checkbox("Show itemized breakdown", key="show_cost_breakdown")
        view_state = _view_state_from_session(st.session_state)
        _show_section(content, SectionId.COSTS, view_state)
        _render_supplier_card(content)

    _show_section(content, SectionId.DISCLAIMERS, view_state)


def _supplier_map_url(zip_code: str) -> str:
    # Keyless search embed; pinned results would need a Maps API key.
    return f"https://www.google.com/maps?q={quote_plus(f'lumber stores near {zip_code.strip()}')}&output=embed"


def _supplier_source_lines(content: PlanContent) -> list[str]:
    sources = content.cost.sources if content.cost is not None else ()
    if not sources:
        return [_FINDING_SUPPLIERS_TEXT]
    return [f"- [{src.title}]({src.uri})" for src in sources]


def _render_supplier_card(content: PlanContent) -> None:
    st.markdown("#### Supplier Network (10 Mile Radius)")
    components.iframe(_supplier_map_url(content.specs.zip_code), height=_SUPPLIER_MAP_HEIGHT_PX)
    st.markdown("**Verified Supplier Grounding**")
    for line in _supplier_source_lines(content):
        st.markdown(line)


def _show_section(content: PlanContent, section_id: SectionId, view_state: SectionViewState) -> None:
    try:
        png = capture_png_bytes(content, section_id, mode=RenderMode.INTERACTIVE, view_state=view_state)
    except Exception as exc:
        # One broken card should not take the page down.
        logger.error("could not render %s: %s", section_id.value, exc)
        st.warning(f"Could not render {section_id.value}.")
        return
    if png:
        st.image(png, use_container_width=True)


def _render_step_image_button(client: Optional[DeckPlannerClient], content: PlanContent) -> None:
    open_step = st.session_state.get("open_step")
    step = next((s for s in content.plan.steps if s.step_number == open_step), None) if content.plan else None
    if client is None or step is None:
        return
    images: dict[int, str] = dict(st.session_state.get("step_images") or {})
    if step.step_number in images:
        return
    if st.button("Generate Technical Visualization", key=f"step_image_{step.step_number}"):
        with st.spinner("Visualizing technical detail..."):
            try:
                url = client.generate_step_image(step.description, "Deck", content.specs.context_label)
            except PlannerServiceError as exc:
                logger.error("step image failed: %s", exc)
                url = None
        if url:
            images[step.step_number] = url
            st.session_state["step_images"] = images
            st.rerun()


def _render_export(cfg: PlannerConfig) -> None:
    state = st.session_state
    if state.get("plan") is None:
        return
    exporter = _get_exporter(cfg)
    if st.button("Download Architectural Plan (PDF)", disabled=not _export_enabled(state), use_container_width=True):
        with st.spinner("Preparing document..."):
            _run_export(state, exporter)

    pdf_bytes = state.get("export_pdf_bytes")
    pdf_err = str(state.get("export_pdf_error") or "")
    if isinstance(pdf_bytes, (bytes, bytearray)):
        st.download_button(
            "Save PDF",
            data=bytes(pdf_bytes),
            file_name=str(state.get("export_pdf_filename") or "DeckMaster_Plan.pdf"),
            mime="application/pdf",
            use_container_width=True,
        )
    elif pdf_err:
        st.error(f"{pdf_err} Please try again.")


def _render_chat(client: Optional[DeckPlannerClient]) -> None:
    st.markdown("### Deck expert chat")
    history: list[ChatMessage] = list(st.session_state.get("chat_history") or [])
    for msg in history:
        with st.chat_message("user" if msg.role == "user" else "assistant"):
            st.markdown(msg.text, unsafe_allow_html=True)

    text = st.chat_input("Ask about codes, materials, or techniques", disabled=client is None)
    if not text or client is None:
        return
    try:
        reply = client.chat_with_assistant(history, text)
    except PlannerServiceError as exc:
        logger.error("chat failed: %s", exc)
        reply = _CHAT_ERROR_TEXT
    history.extend([ChatMessage(role="user", text=text), ChatMessage(role="assistant", text=reply)])
    st.session_state["chat_history"] = history
    st.rerun()


def main() -> None:
    st.set_page_config(page_title="DeckMaster AI Planner", layout="wide")
    cfg = _load_config()
    client = _get_client(cfg)

    st.title("DeckMaster AI Planner")
    st.caption(
        "Design, specify, and cost your dream deck in minutes using AI, local pricing data, "
        "and architectural best practices."
    )

    tab_plan, tab_chat = st.tabs(["Plan", "Chat"])
    with tab_plan:
        _render_input_form(client)
        _render_export(cfg)
        _render_outputs(client)
    with tab_chat:
        _render_chat(client)


if __name__ == "__main__":
    main()
