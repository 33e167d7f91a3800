"""Resolve per-profile client storage paths."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path.home() / ".roomchat"
PROFILES_DIR = BASE_DIR / "profiles"


@dataclass(frozen=True)
class ProfilePaths:
    settings_path: Path
    local_storage_path: Path


def _ensure_private_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True, mode=0o700)


def resolve_profile_paths(profile: str) -> ProfilePaths:
    if profile == "default":
        _ensure_private_dir(BASE_DIR)
        return ProfilePaths(
            settings_path=BASE_DIR / "settings.json",
            local_storage_path=BASE_DIR / "local_storage.json",
        )

    profile_dir = PROFILES_DIR / profile
    _ensure_private_dir(profile_dir)
    return ProfilePaths(
        settings_path=profile_dir / "settings.json",
        local_storage_path=profile_dir / "local_storage.json",
    )
