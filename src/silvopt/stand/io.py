"""Stand loading utilities (YAML metadata + CSV tree tables)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pandas as pd
import yaml

from silvopt.core.errors import SilvoptValueError
from silvopt.stand.models import FinancialScenario, StandConfig, TreeRecord

__all__ = ["load_financial_scenarios", "load_stand", "read_trees_csv"]

TREE_COLUMNS = ("species", "dbh_cm", "height_m", "crown_ratio", "expansion_factor")


def read_trees_csv(path: Path) -> list[TreeRecord]:
    """Load tree records from a CSV with one row per tree."""

    frame = pd.read_csv(path)
    missing = {"species", "dbh_cm", "height_m", "expansion_factor"} - set(frame.columns)
    if missing:
        raise SilvoptValueError(f"Tree table {path} is missing columns: {sorted(missing)}")
    if "crown_ratio" not in frame.columns:
        frame["crown_ratio"] = 0.5
    records = frame[list(TREE_COLUMNS)].to_dict(orient="records")
    return [TreeRecord.model_validate(record) for record in records]


def _resolve_path(root: Path, value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = root / path
    if not path.exists():
        raise FileNotFoundError(path)
    return path


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise SilvoptValueError(f"Stand file {path} must contain a mapping")
    return data


def load_stand(path: str | Path) -> StandConfig:
    """Load a stand from YAML.

    Trees are either listed inline under ``trees`` or read from the CSV named by
    ``trees_csv`` (resolved relative to the YAML file).
    """

    path = Path(path)
    data = _read_yaml(path)
    trees_csv = data.pop("trees_csv", None)
    data.pop("financial", None)
    if trees_csv is not None:
        if "trees" in data:
            raise SilvoptValueError(f"Stand file {path} lists both trees and trees_csv")
        data["trees"] = read_trees_csv(_resolve_path(path.parent, trees_csv))
    return StandConfig.model_validate(data)


def load_financial_scenarios(path: str | Path) -> list[FinancialScenario]:
    """Read the optional ``financial`` list from a stand YAML."""

    data = _read_yaml(Path(path))
    entries = data.get("financial") or [{}]
    return [FinancialScenario.model_validate(entry) for entry in entries]
