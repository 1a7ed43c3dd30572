from __future__ import annotations

import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import DATA_DIR
from .models import Catalogs, Upgrade
from .schema import (
    AdminConfigModel,
    DailyRewardModel,
    DealModel,
    SettingsPayload,
    TaskModel,
    UpgradeModel,
)


logger = logging.getLogger(__name__)


class GameData:
    """Built-in catalogs shipped with the game; used when the store has none."""

    def __init__(self, data_dir: Path = DATA_DIR):
        self.data_dir = data_dir
        self.upgrades = [UpgradeModel.model_validate(u).to_upgrade() for u in self._load_json("upgrades.json")]
        self.deals = [DealModel.model_validate(d).to_deal() for d in self._load_json("deals.json")]
        self.tasks = [TaskModel.model_validate(t).to_task() for t in self._load_json("tasks.json")]
        self.daily_rewards = [
            DailyRewardModel.model_validate(r).to_reward()
            for r in self._load_json("daily_rewards.json")
        ]
        self.admin = AdminConfigModel.model_validate(self._load_json("admin.json")).to_config()
        self._upgrade_index = {u.id: u for u in self.upgrades}

    def _load_json(self, name: str) -> Any:
        path = self.data_dir / name
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def get_upgrade(self, upgrade_id: str) -> Optional[Upgrade]:
        return self._upgrade_index.get(upgrade_id)

    def catalogs(self) -> Catalogs:
        return Catalogs(
            upgrades=list(self.upgrades),
            deals=list(self.deals),
            tasks=list(self.tasks),
            daily_rewards=list(self.daily_rewards),
            admin=self.admin,
        )


def sanitize_upgrades(global_upgrades: List[UpgradeModel], data: GameData) -> List[Upgrade]:
    """Global upgrades always start at level 0 and at their baseline cost."""
    result: List[Upgrade] = []
    for model in global_upgrades:
        upgrade = model.to_upgrade()
        baseline = data.get_upgrade(upgrade.id)
        if baseline is not None and baseline.cost != upgrade.cost:
            logger.warning("Global upgrade %s has cost %s, resetting to %s", upgrade.id, upgrade.cost, baseline.cost)
            upgrade = replace(upgrade, cost=baseline.cost)
        result.append(upgrade)
    return result


def parse_settings(payload: Dict[str, Any]) -> SettingsPayload:
    """Validate the settings row section by section.

    A section that fails validation is dropped with a warning, so the
    built-in catalog stays in effect for it.
    """
    try:
        return SettingsPayload.model_validate(payload)
    except ValidationError:
        logger.warning("Global settings did not validate, checking each section")
    settings = SettingsPayload()
    for key, value in payload.items():
        try:
            section = SettingsPayload.model_validate({key: value})
        except ValidationError as e:
            logger.warning("Ignoring settings section %s: %s", key, e)
            continue
        for name in section.model_fields_set:
            setattr(settings, name, getattr(section, name))
    return settings


def merge_catalogs(data: GameData, payload: Optional[Dict[str, Any]]) -> Catalogs:
    catalogs = data.catalogs()
    if not payload:
        return catalogs
    if not isinstance(payload, dict):
        logger.warning("Global settings are not an object, ignoring them")
        return catalogs
    settings = parse_settings(payload)
    if settings.upgrades:
        catalogs.upgrades = sanitize_upgrades(settings.upgrades, data)
    if settings.deals is not None:
        catalogs.deals = [d.to_deal() for d in settings.deals]
    if settings.tasks is not None:
        catalogs.tasks = [t.to_task() for t in settings.tasks]
    if settings.daily_rewards:
        catalogs.daily_rewards = [r.to_reward() for r in settings.daily_rewards]
    if settings.admin_config is not None:
        catalogs.admin = settings.admin_config.to_config()
    return catalogs
