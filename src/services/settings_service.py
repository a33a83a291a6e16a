from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

import tomlkit
from pydantic import ValidationError

from domain.models import EngineSettings
from shared.constants import PROFILES_DIR

logger = logging.getLogger(__name__)


def _is_table(value: Any) -> bool:
    if isinstance(value, dict):
        return True
    return isinstance(value, list) and bool(value) and all(isinstance(v, dict) for v in value)


class SettingsService:
    """TOML profiles of EngineSettings plus the active profile selection.

    Stores the active profile name in a .active marker file inside the
    profiles directory.
    """

    NAME_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$')
    SUFFIX = '.toml'

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self.base_dir = Path(base_dir or PROFILES_DIR).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.active_file = self.base_dir / '.active'

    def _validate_name(self, name: str) -> None:
        if not self.NAME_RE.fullmatch(name):
            msg = (
                f'Invalid profile name {name!r}: use latin letters, digits, '
                "'-' and '_', start with a letter or digit, at most 64 chars"
            )
            raise ValueError(msg)

    def profile_path(self, name: str) -> Path:
        return self.base_dir / f'{name}{self.SUFFIX}'

    # Active profile
    def get_active_profile(self) -> str | None:
        if self.active_file.exists():
            name = self.active_file.read_text(encoding='utf-8').strip()
            return name or None
        return None

    def set_active_profile(self, name: str) -> None:
        if not self.exists(name):
            msg = f'Profile not found: {name}'
            raise FileNotFoundError(msg)
        self.active_file.write_text(name, encoding='utf-8')

    def load_active(self) -> EngineSettings:
        """Settings of the active profile, or defaults when none is set."""
        name = self.get_active_profile()
        if name is None or not self.exists(name):
            return EngineSettings()
        return self.load(name)

    # CRUD and queries
    def list_profiles(self) -> list[str]:
        return sorted(p.stem for p in self.base_dir.glob(f'*{self.SUFFIX}'))

    def exists(self, name: str) -> bool:
        return self.profile_path(name).exists()

    def load(self, name: str) -> EngineSettings:
        path = self.profile_path(name)
        if not path.exists():
            msg = f'Profile not found: {name}'
            raise FileNotFoundError(msg)
        data = tomlkit.parse(path.read_text(encoding='utf-8')).unwrap()
        try:
            return EngineSettings.model_validate(data)
        except ValidationError as e:
            msg = f'Profile {name} is invalid: {e}'
            raise ValueError(msg) from e

    def save(self, name: str, data: EngineSettings | dict[str, Any]) -> Path:
        self._validate_name(name)
        settings = data if isinstance(data, EngineSettings) else EngineSettings.model_validate(data)
        data = settings.model_dump(mode='json', exclude_none=True)
        # plain keys must precede tables in TOML
        tables = {k: v for k, v in data.items() if _is_table(v)}
        doc = tomlkit.document()
        for key, value in data.items():
            if key not in tables:
                doc[key] = value
        for key, value in tables.items():
            doc[key] = value
        path = self.profile_path(name)
        path.write_text(tomlkit.dumps(doc), encoding='utf-8')
        logger.info('Profile %s saved to %s', name, path)
        return path

    def create(self, name: str, base: EngineSettings | None = None) -> None:
        self._validate_name(name)
        if self.exists(name):
            msg = f'Profile already exists: {name}'
            raise FileExistsError(msg)
        if base is None:
            base = self.load('default') if self.exists('default') else EngineSettings()
        self.save(name, base)

    def duplicate(self, src: str, dst: str) -> None:
        self._validate_name(dst)
        if not self.exists(src):
            msg = f'Source profile not found: {src}'
            raise FileNotFoundError(msg)
        if self.exists(dst):
            msg = f'Profile already exists: {dst}'
            raise FileExistsError(msg)
        self.save(dst, self.load(src))

    def rename(self, old: str, new: str) -> None:
        self._validate_name(new)
        if not self.exists(old):
            msg = f'Profile not found: {old}'
            raise FileNotFoundError(msg)
        if self.exists(new):
            msg = f'Profile already exists: {new}'
            raise FileExistsError(msg)
        self.profile_path(old).rename(self.profile_path(new))
        if self.get_active_profile() == old:
            self.set_active_profile(new)

    def delete(self, name: str) -> None:
        if self.get_active_profile() == name:
            msg = 'Cannot delete the active profile, switch to another one first'
            raise PermissionError(msg)
        if not self.exists(name):
            return
        self.profile_path(name).unlink()
        logger.info('Profile %s deleted', name)
