"""
config.py - Settings for the water monitor

Env (overrides config.json if present):
  WATERMON_CONFIG=/path/to/config.json
  PH_ADC_ADDR=0x48
  ORP_EC_ADC_ADDR=0x49
  ADC_VREF=2.048
  FILTER_DT=1.0           # seconds between readings
  FALLBACK_TEMP_C=20.0    # compensation temperature when the RTD fails
  RTD_NOMINAL=100.0
  RTD_REF_RESISTOR=430.0
  RTD_WIRES=3
  EC_CELL_CONSTANT=1.0    # 1/cm
  EC_TARGET_V=0.8
  EC_SETTLE_MS=200
  MOCK_HARDWARE=0|1

Config file (optional): ../config.json
  {
    "adc": { "ph_address": "0x48", "orp_ec_address": "0x49", "vref": 2.048 },
    "filter": { "dt": 1.0 },
    "temperature": { "fallback_c": 20.0 },
    "rtd": { "nominal": 100.0, "ref_resistor": 430.0, "wires": 3 },
    "ec": { "cell_constant": 1.0, "target_voltage": 0.8, "settle_ms": 200 }
  }

Calibration points are not stored here.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).parent.parent
CONFIG_FILE = REPO_ROOT / "config.json"

# path in config.json -> env override
ENV_KEYS = {
    "adc.ph_address": "PH_ADC_ADDR",
    "adc.orp_ec_address": "ORP_EC_ADC_ADDR",
    "adc.vref": "ADC_VREF",
    "filter.dt": "FILTER_DT",
    "temperature.fallback_c": "FALLBACK_TEMP_C",
    "rtd.nominal": "RTD_NOMINAL",
    "rtd.ref_resistor": "RTD_REF_RESISTOR",
    "rtd.wires": "RTD_WIRES",
    "ec.cell_constant": "EC_CELL_CONSTANT",
    "ec.target_voltage": "EC_TARGET_V",
    "ec.settle_ms": "EC_SETTLE_MS",
}


@dataclass(frozen=True)
class Settings:
    ph_address: int = 0x48
    orp_ec_address: int = 0x49
    vref: float = 2.048
    dt: float = 1.0
    fallback_temp_c: float = 20.0
    rtd_nominal: float = 100.0
    rtd_ref_resistor: float = 430.0
    rtd_wires: int = 3
    ec_cell_constant: float = 1.0
    ec_target_voltage: float = 0.8
    ec_settle_ms: int = 200
    mock: bool = False


def _load_config(path: Path | None = None) -> dict:
    path = Path(path or os.getenv("WATERMON_CONFIG") or CONFIG_FILE)
    cfg = {}
    try:
        if path.exists():
            with open(path, "r") as f:
                cfg = json.load(f) or {}
    except (OSError, ValueError) as e:
        logger.warning("Failed to read %s: %s", path, e)
        return {}
    if not isinstance(cfg, dict):
        logger.warning("Ignoring %s: top level is not an object", path)
        return {}
    return cfg


def _get_env_or_cfg(cfg: dict, path: str, default=None):
    """
    Lookup with env override. `path` like 'adc.vref' or 'ec.settle_ms'.
    """
    env = ENV_KEYS.get(path)
    if env is not None:
        v = os.getenv(env)
        if v is not None:
            return v

    cur = cfg
    for key in path.split("."):
        if not isinstance(cur, dict) or key not in cur:
            return default
        cur = cur[key]
    return cur


def _address(value) -> int:
    if isinstance(value, str):
        return int(value, 0)
    return int(value)


def load_settings(path: Path | None = None) -> Settings:
    """Build Settings from defaults, config.json, then environment."""
    cfg = _load_config(path)
    d = Settings()

    def get(key, default, cast=float):
        return cast(_get_env_or_cfg(cfg, key, default))

    return Settings(
        ph_address=get("adc.ph_address", d.ph_address, _address),
        orp_ec_address=get("adc.orp_ec_address", d.orp_ec_address, _address),
        vref=get("adc.vref", d.vref),
        dt=get("filter.dt", d.dt),
        fallback_temp_c=get("temperature.fallback_c", d.fallback_temp_c),
        rtd_nominal=get("rtd.nominal", d.rtd_nominal),
        rtd_ref_resistor=get("rtd.ref_resistor", d.rtd_ref_resistor),
        rtd_wires=get("rtd.wires", d.rtd_wires, int),
        ec_cell_constant=get("ec.cell_constant", d.ec_cell_constant),
        ec_target_voltage=get("ec.target_voltage", d.ec_target_voltage),
        ec_settle_ms=get("ec.settle_ms", d.ec_settle_ms, int),
        mock=os.getenv("MOCK_HARDWARE", "0") == "1",
    )
