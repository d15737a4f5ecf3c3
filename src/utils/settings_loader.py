import json
import os
from pathlib import Path
from typing import Dict, MutableMapping, Optional

from src.utils.errors import ConfigurationError

ROOT = Path(__file__).resolve().parents[2]
LOCAL_SETTINGS_PATH = ROOT / "local.settings.json"


def load_local_settings(settings_path: Path = LOCAL_SETTINGS_PATH) -> Dict[str, str]:
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{settings_path.name} inválido: {exc}") from exc
    values = data.get("Values", {})
    return {key: str(value) for key, value in values.items()}


def apply_local_settings(
    settings_path: Path = LOCAL_SETTINGS_PATH,
    environ: Optional[MutableMapping[str, str]] = None,
) -> None:
    # Las variables de entorno ya definidas tienen prioridad.
    target = os.environ if environ is None else environ
    for key, value in load_local_settings(settings_path).items():
        target.setdefault(key, value)
