from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PlannerConfig:
    openai_api_key: Optional[str]
    plan_model: str = "gpt-5"
    cost_model: str = "gpt-5-mini"
    chat_model: str = "gpt-5-mini"
    image_model: str = "gpt-image-1"
    request_timeout_s: float = 120.0
    hero_image_timeout_s: float = 15.0
    capture_scale: int = 2
    capture_background: str = "#f3f4f6"
    log_level: str = "INFO"

    @property
    def ai_enabled(self) -> bool:
        return bool(self.openai_api_key)


def load_dotenv_file(path: Optional[Path] = None) -> None:
    # python-dotenv's auto discovery walks stack frames; be explicit about the path.
    load_dotenv(dotenv_path=path or (Path.cwd() / ".env"))


def load_config_from_env(environ: Optional[Mapping[str, str]] = None) -> PlannerConfig:
    """
    Load config from environment variables (after dotenv is loaded).

    Nothing here is required: without `OPENAI_API_KEY` the app still renders and exports
    previously generated content, it just cannot ask the model for new plans.
    """
    env = os.environ if environ is None else environ

    api_key = _as_optional_str(env.get("OPENAI_API_KEY"))
    scale = _as_int(env.get("PLANNER_CAPTURE_SCALE"), "PLANNER_CAPTURE_SCALE", default=2)
    if scale < 1 or scale > 4:
        raise ConfigError(f"PLANNER_CAPTURE_SCALE must be between 1 and 4 (got {scale})")

    return PlannerConfig(
        openai_api_key=api_key,
        plan_model=_as_optional_str(env.get("OPENAI_PLAN_MODEL")) or "gpt-5",
        cost_model=_as_optional_str(env.get("OPENAI_COST_MODEL")) or "gpt-5-mini",
        chat_model=_as_optional_str(env.get("OPENAI_CHAT_MODEL")) or "gpt-5-mini",
        image_model=_as_optional_str(env.get("OPENAI_IMAGE_MODEL")) or "gpt-image-1",
        request_timeout_s=_as_float(env.get("PLANNER_TIMEOUT_S"), "PLANNER_TIMEOUT_S", default=120.0),
        hero_image_timeout_s=_as_float(env.get("PLANNER_HERO_IMAGE_TIMEOUT_S"), "PLANNER_HERO_IMAGE_TIMEOUT_S", default=15.0),
        capture_scale=scale,
        capture_background=_as_optional_str(env.get("PLANNER_CAPTURE_BACKGROUND")) or "#f3f4f6",
        log_level=(_as_optional_str(env.get("PLANNER_LOG_LEVEL")) or "INFO").upper(),
    )


def configure_logging(level: str = "INFO") -> None:
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _as_optional_str(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    v = value.strip()
    return v if v else None


def _as_float(value: object, key: str, *, default: float) -> float:
    v = _as_optional_str(value)
    if v is None:
        return default
    try:
        f = float(v)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number (got {v!r})") from e
    if f <= 0:
        raise ConfigError(f"{key} must be > 0 (got {f})")
    return f


def _as_int(value: object, key: str, *, default: int) -> int:
    v = _as_optional_str(value)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer (got {v!r})") from e
