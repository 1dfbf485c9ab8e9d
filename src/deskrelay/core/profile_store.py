"""Static credential profiles loaded once from `profiles.json`."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from threading import RLock
from typing import Any

from .config_loader import get_profiles_path
from .errors import ValidationError

logger = logging.getLogger(__name__)

_SECRET_KEYS = ("refreshToken", "clientId", "clientSecret")
_REQUIRED_KEYS = ("profileName", "orgId", "defaultDepartmentId", *_SECRET_KEYS)


@dataclass(frozen=True, slots=True)
class Profile:
    """One help-desk organization/department plus its OAuth credentials."""

    name: str
    org_id: str
    department_id: str
    refresh_token: str
    client_id: str
    client_secret: str
    from_address: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Profile":
        missing = [key for key in _REQUIRED_KEYS if not str(record.get(key) or "").strip()]
        if missing:
            label = record.get("profileName") or "<unnamed>"
            raise ValueError(f"Profile {label} is missing fields: {', '.join(missing)}")
        from_address = record.get("fromEmailAddress")
        return cls(
            name=str(record["profileName"]).strip(),
            org_id=str(record["orgId"]).strip(),
            department_id=str(record["defaultDepartmentId"]).strip(),
            refresh_token=str(record["refreshToken"]),
            client_id=str(record["clientId"]),
            client_secret=str(record["clientSecret"]),
            from_address=from_address.strip() if isinstance(from_address, str) and from_address.strip() else None,
        )

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "profileName": self.name,
            "orgId": self.org_id,
            "defaultDepartmentId": self.department_id,
            "fromEmailAddress": self.from_address,
        }


class ProfileStore:
    """Read-only profile lookup keyed by profile name."""

    def __init__(self, profiles: list[Profile] | None = None, *, path: Path | None = None) -> None:
        self._lock = RLock()
        self._path = path
        self._profiles: dict[str, Profile] | None = None
        if profiles is not None:
            self._profiles = {profile.name: profile for profile in profiles}

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> "ProfileStore":
        return cls(path=Path(path) if path is not None else get_profiles_path())

    @staticmethod
    def _read_profiles(path: Path) -> dict[str, Profile]:
        if not path.exists():
            raise FileNotFoundError(f"Profiles file not found: {path}")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in profiles file: {path}") from exc
        if not isinstance(payload, list):
            raise ValueError(f"Profiles file must hold a JSON list: {path}")

        out: dict[str, Profile] = {}
        for record in payload:
            if not isinstance(record, dict):
                raise ValueError(f"Profile entries must be JSON objects: {path}")
            profile = Profile.from_record(record)
            if profile.name in out:
                raise ValueError(f"Duplicate profile name '{profile.name}' in {path}")
            out[profile.name] = profile
        return out

    def _loaded(self) -> dict[str, Profile]:
        with self._lock:
            if self._profiles is None:
                if self._path is None:
                    raise FileNotFoundError("No profiles path configured.")
                self._profiles = self._read_profiles(self._path)
                logger.info("loaded %d profile(s) from %s", len(self._profiles), self._path)
            return self._profiles

    def reload(self) -> int:
        with self._lock:
            self._profiles = None
            return len(self._loaded())

    def get(self, name: str | None) -> Profile:
        clean = (name or "").strip()
        if not clean:
            raise ValidationError(message="A profile name is required.", code="profile_missing")
        try:
            profiles = self._loaded()
        except (FileNotFoundError, ValueError) as exc:
            logger.error("profile lookup failed: %s", exc)
            raise ValidationError(message="Could not load profiles.", code="profiles_unavailable") from exc
        profile = profiles.get(clean)
        if profile is None:
            raise ValidationError(message="Profile not found.", code="profile_not_found")
        return profile

    def list_public(self) -> list[dict[str, Any]]:
        return [profile.to_public_dict() for profile in self._loaded().values()]

    def names(self) -> list[str]:
        return list(self._loaded())
