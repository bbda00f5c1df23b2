from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from .constants import DEFAULT_CREDIT_COSTS, DEFAULT_PLANS
from .models.plan import PlanConfig


DEFAULT_CONFIG_FILE_NAME = "config.yaml"
CREDIT_SERVICE_PORT_ENV = "CREDIT_SERVICE_PORT"
CREDIT_SERVICE_CONFIG_ENV = "CREDIT_SERVICE_CONFIG"


@dataclass(slots=True)
class CreditsConfig:
    """비용표(액션 -> 크레딧)와 플랜표(tier -> PlanConfig)."""

    costs: dict[str, int]
    plans: dict[str, PlanConfig]

    def cost_of(self, action_name: str) -> int | None:
        return self.costs.get(action_name)

    def plan_of(self, tier: str | None) -> PlanConfig | None:
        if not tier:
            return None
        return self.plans.get(tier)


@dataclass(slots=True)
class AppConfig:
    """credit-service 전체 설정 루트."""

    credits: CreditsConfig
    port: int = 8003
    source_path: Path | None = field(default=None)


def default_credits_config() -> CreditsConfig:
    return CreditsConfig(
        costs={str(name): cost for name, cost in DEFAULT_CREDIT_COSTS.items()},
        plans={
            str(tier): PlanConfig(
                tier=str(tier),
                name=name,
                monthly_credits=monthly_credits,
                price=price,
                features=list(features),
            )
            for tier, (name, monthly_credits, price, features) in DEFAULT_PLANS.items()
        },
    )


def _find_config_path() -> Path | None:
    """CREDIT_SERVICE_CONFIG 가 있으면 그 경로, 없으면 작업 디렉토리부터 상위로 config.yaml 을 찾는다."""

    explicit = os.getenv(CREDIT_SERVICE_CONFIG_ENV, "").strip()
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise RuntimeError(f"{CREDIT_SERVICE_CONFIG_ENV} points to missing file: {path}")
        return path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def _parse_non_negative_int(value: Any, *, where: str, path: Path) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:  # noqa: TRY003
        raise RuntimeError(f"invalid {where} in {path}: {value!r}") from exc
    if parsed < 0:
        raise RuntimeError(f"{where} must be >= 0 in {path}: {value!r}")
    return parsed


def parse_credits_config(data: dict[str, Any], path: Path) -> CreditsConfig:
    """config.yaml 의 credits 섹션을 기본값 위에 덮어쓴다."""

    result = default_credits_config()
    section = data.get("credits") or {}
    if not isinstance(section, dict):
        raise RuntimeError(f"credits section must be a mapping in {path}")

    costs_raw = section.get("costs") or {}
    for action_name, cost in costs_raw.items():
        key = str(action_name).strip().upper()
        result.costs[key] = _parse_non_negative_int(
            cost, where=f"credits.costs.{key}", path=path
        )

    plans_raw = section.get("plans") or {}
    for tier_raw, item in plans_raw.items():
        tier = str(tier_raw).strip().lower()
        if not isinstance(item, dict):
            raise RuntimeError(f"credits.plans.{tier} must be a mapping in {path}")
        base = result.plans.get(tier)
        result.plans[tier] = PlanConfig(
            tier=tier,
            name=str(item.get("name") or (base.name if base else tier.title())),
            monthly_credits=_parse_non_negative_int(
                item.get("monthly_credits", base.monthly_credits if base else 0),
                where=f"credits.plans.{tier}.monthly_credits",
                path=path,
            ),
            price=_parse_non_negative_int(
                item.get("price", base.price if base else 0),
                where=f"credits.plans.{tier}.price",
                path=path,
            ),
            features=[str(f) for f in item.get("features", base.features if base else [])],
        )

    return result


def load_config() -> AppConfig:
    """credit-service 설정을 로드한다.

    config.yaml 이 없으면 내장 비용표/플랜표를 그대로 사용한다.
    """

    port = int(os.getenv(CREDIT_SERVICE_PORT_ENV, "8003"))

    path = _find_config_path()
    if path is None:
        return AppConfig(credits=default_credits_config(), port=port)

    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    return AppConfig(credits=parse_credits_config(data, path), port=port, source_path=path)


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """FastAPI DI / 컨슈머에서 공유하는 설정 싱글톤."""
    return load_config()
