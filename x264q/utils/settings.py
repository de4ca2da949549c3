# x264q/utils/settings.py
import json
import logging
from pathlib import Path

from ..models.job import EncoderParameters, EncoderPreset

log = logging.getLogger(__name__)

# Top directory = folder that contains the `x264q/` package
def _top_dir() -> Path:
    # This file is x264q/utils/settings.py → parents[2] is the folder above x264q/
    return Path(__file__).resolve().parents[2]

APP_SETTINGS_FILE = _top_dir() / "x264q_settings.json"

DEFAULT_SETTINGS = {
    "output_root": str(Path.home() / "x264q_out"),
    "x264_path": "x264",
    "mkvmerge_path": "mkvmerge",
    "encoder_job_limit": 0,            # 0 => one encoder per CPU
    "sar": "16:15",
    "perform_cleanup": True,           # delete segment scripts and .264 files after merging

    # presets: [{"name": ..., "command": ...}], "Default" is always available
    "presets": [],
    "active_preset": "Default",
}

def load_settings(path: Path | None = None) -> dict:
    p = Path(path) if path else APP_SETTINGS_FILE
    if p.exists():
        try:
            data = json.loads(p.read_text())
            return {**DEFAULT_SETTINGS, **data}
        except (OSError, ValueError) as e:
            log.warning("Ignoring unreadable settings file %s: %s", p, e)
            return dict(DEFAULT_SETTINGS)
    # First run → write defaults so the file exists
    try:
        p.write_text(json.dumps(DEFAULT_SETTINGS, indent=2))
    except OSError as e:
        log.warning("Could not write default settings to %s: %s", p, e)
    return dict(DEFAULT_SETTINGS)

def save_settings(data: dict, path: Path | None = None) -> None:
    p = Path(path) if path else APP_SETTINGS_FILE
    p.write_text(json.dumps(data, indent=2))

def load_presets(settings: dict) -> list[EncoderPreset]:
    presets = [EncoderPreset(p["name"], p["command"]) for p in settings.get("presets", [])
               if p.get("name") and "command" in p]
    default = EncoderPreset.default()
    if default not in presets:
        presets.insert(0, default)
    return presets

def store_presets(settings: dict, presets: list[EncoderPreset]) -> dict:
    settings["presets"] = [{"name": p.name, "command": p.command} for p in presets]
    return settings

def active_preset(settings: dict, name: str | None = None) -> EncoderPreset:
    wanted = name or settings.get("active_preset") or "Default"
    for preset in load_presets(settings):
        if preset.name == wanted:
            return preset
    raise KeyError(f"Unknown encoder preset: {wanted}")

def encoder_parameters(settings: dict) -> EncoderParameters:
    return EncoderParameters(
        x264_path=settings["x264_path"],
        mkvmerge_path=settings["mkvmerge_path"],
        job_limit=int(settings.get("encoder_job_limit", 0)),
    )
