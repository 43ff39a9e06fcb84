"""
Effective configuration: the defaults of `keeper.settings`, with optional
JSON overrides layered on top.

Modules import the shared instance:

    from keeper.config import effective_settings as config
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import keeper.settings as default_settings

log = logging.getLogger(__name__)

TRUE_STRINGS = ('true', '1', 't', 'yes', 'y')


def _coerce(default: Any, value: Any) -> Any:
    """
    Converts an override to the type of the default it replaces.

    :raises TypeError, ValueError: If the value cannot be converted.
    """
    if isinstance(default, Path):
        return Path(value)
    if isinstance(default, bool):
        return str(value).lower() in TRUE_STRINGS
    if default is None:
        return value
    return type(default)(value)


class MergedSettings:
    """
    Attribute access to every uppercase setting.

    Precedence, lowest first: the values in `settings.py`, then environment
    variables and `.env` (read by settings.py), then the overrides file. Only
    names listed in `MODIFIABLE_SETTINGS` can be overridden from the file.
    """

    def __init__(self, overrides_path: Optional[Path] = None) -> None:
        """
        :param overrides_path: Overrides file to use instead of OVERRIDES_JSON_PATH.
        """
        for name in dir(default_settings):
            if name.isupper():
                setattr(self, name, getattr(default_settings, name))
        if overrides_path is not None:
            self.OVERRIDES_JSON_PATH = Path(overrides_path)
        self.apply_overrides(self._read_overrides())

    def _read_overrides(self) -> Dict[str, Any]:
        path = self.OVERRIDES_JSON_PATH
        if not path.exists():
            return {}
        try:
            overrides = json.loads(path.read_text())
        except (OSError, ValueError) as e:
            log.error(f"Ignoring unreadable overrides file '{path}': {e}")
            return {}
        if not isinstance(overrides, dict):
            log.error(f"Ignoring overrides file '{path}': expected a JSON object.")
            return {}
        log.info(f"Loading configuration overrides from {path}")
        return overrides

    def apply_overrides(self, overrides: Dict[str, Any]) -> List[str]:
        """
        Applies modifiable overrides in place. Unknown, protected or unconvertible entries are skipped.

        :return: The names that were applied.
        """
        applied = []
        for name, value in overrides.items():
            if not hasattr(self, name):
                log.warning(f"Unknown setting '{name}' in overrides. Ignoring.")
                continue
            if name not in self.MODIFIABLE_SETTINGS:
                log.warning(f"Setting '{name}' cannot be overridden. Ignoring.")
                continue
            try:
                value = _coerce(getattr(self, name), value)
            except (TypeError, ValueError) as e:
                log.warning(f"Could not convert override '{name}'={value!r}: {e}. Ignoring.")
                continue
            setattr(self, name, value)
            log.debug(f"Overridden setting: {name} = {value}")
            applied.append(name)
        return applied

    def save_overrides(self, overrides: Dict[str, Any]) -> None:
        """
        Writes the modifiable entries of `overrides` to the overrides file.

        The values take effect for instances started afterwards.

        :param overrides: Setting names mapped to their new values.
        """
        modifiable = {name: value for name, value in overrides.items() if name in self.MODIFIABLE_SETTINGS}
        if not modifiable:
            log.warning("No modifiable settings provided to save.")
            return

        path = self.OVERRIDES_JSON_PATH
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(modifiable, indent=4))
        except OSError as e:
            log.error(f"Failed to write overrides file '{path}': {e}")
            return
        log.info(f"Configuration overrides saved to {path}")


effective_settings = MergedSettings()
