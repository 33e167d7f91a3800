"""Client configuration: defaults, a JSON settings file, then ROOMCHAT_* environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from roomchat.mutations import DELETED_PLACEHOLDER
from roomchat.presentation import DEFAULT_HIGHLIGHT_DURATION_S, DEFAULT_SCROLL_THRESHOLD_PX

DEFAULT_BASE_URL = "http://127.0.0.1:8788"
ENV_PREFIX = "ROOMCHAT_"


@dataclass(frozen=True)
class ChatSettings:
    base_url: str = DEFAULT_BASE_URL
    scroll_threshold_px: float = DEFAULT_SCROLL_THRESHOLD_PX
    highlight_duration_s: float = DEFAULT_HIGHLIGHT_DURATION_S
    deleted_placeholder: str = DELETED_PLACEHOLDER
    storage_path: Optional[Path] = None


def _atomic_write(path: Path | str, content: str) -> None:
    """Write content atomically to ``path`` using fsync + rename."""

    path = Path(path).expanduser()
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.parent.mkdir(parents=True, exist_ok=True)
    with open(tmp_path, "w", encoding="utf-8") as handle:
        handle.write(content)
        handle.flush()
        os.fsync(handle.fileno())
    tmp_path.replace(path)


def load_settings(path: Path | str) -> Dict[str, Any]:
    """Load persisted client settings from disk if present."""

    try:
        data = json.loads(Path(path).expanduser().read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            return {}
        return data
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError:
        return {}


def persist_settings(settings: Dict[str, Any], path: Path | str) -> None:
    payload = json.dumps(settings, indent=2, sort_keys=True)
    _atomic_write(Path(path).expanduser(), payload)


def _coerce(field: str, value: Any) -> Any:
    if field in {"scroll_threshold_px", "highlight_duration_s"}:
        return float(value)
    if field == "storage_path":
        return Path(str(value)).expanduser()
    return str(value)


def resolve_settings(
    file_settings: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> ChatSettings:
    """Layer file values, then environment variables, then explicit overrides over the defaults."""

    settings = ChatSettings()
    environ = os.environ if environ is None else environ
    fields = ("base_url", "scroll_threshold_px", "highlight_duration_s", "deleted_placeholder", "storage_path")
    for field in fields:
        layers = [
            (file_settings or {}).get(field),
            environ.get(ENV_PREFIX + field.upper()),
            overrides.get(field),
        ]
        for value in layers:
            if value is None or value == "":
                continue
            try:
                settings = replace(settings, **{field: _coerce(field, value)})
            except (TypeError, ValueError):
                raise ValueError(f"invalid value for {field}: {value!r}") from None
    return settings
