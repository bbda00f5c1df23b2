from __future__ import annotations

from pathlib import Path

import pytest

from credit_service.app.config import CREDIT_SERVICE_CONFIG_ENV, load_config


def _write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "credit.yaml"
    path.write_text(body, encoding="utf-8")
    return path


def test_yaml_overrides_costs_and_plans(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = _write_config(
        tmp_path,
        """
credits:
  costs:
    quiz_generation: 5
  plans:
    starter:
      monthly_credits: 120
    student:
      name: Student
      monthly_credits: 60
      price: 4
""",
    )
    monkeypatch.setenv(CREDIT_SERVICE_CONFIG_ENV, str(path))
    monkeypatch.setenv("CREDIT_SERVICE_PORT", "9100")

    config = load_config()

    assert config.port == 9100
    assert config.source_path == path
    assert config.credits.cost_of("QUIZ_GENERATION") == 5
    # 생략한 항목은 기본값 유지
    assert config.credits.cost_of("DOCUMENT_UPLOAD") == 30
    starter = config.credits.plan_of("starter")
    assert starter is not None
    assert starter.monthly_credits == 120
    assert starter.price == 9
    assert starter.name == "Starter"
    student = config.credits.plan_of("student")
    assert student is not None
    assert (student.name, student.monthly_credits, student.price) == ("Student", 60, 4)


def test_negative_cost_is_rejected(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write_config(tmp_path, "credits:\n  costs:\n    AI_EXPLANATION: -1\n")
    monkeypatch.setenv(CREDIT_SERVICE_CONFIG_ENV, str(path))

    with pytest.raises(RuntimeError):
        load_config()


def test_non_numeric_plan_credits_are_rejected(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    path = _write_config(
        tmp_path, "credits:\n  plans:\n    pro:\n      monthly_credits: lots\n"
    )
    monkeypatch.setenv(CREDIT_SERVICE_CONFIG_ENV, str(path))

    with pytest.raises(RuntimeError):
        load_config()


def test_missing_explicit_config_file_is_an_error(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv(CREDIT_SERVICE_CONFIG_ENV, str(tmp_path / "absent.yaml"))

    with pytest.raises(RuntimeError):
        load_config()


def test_defaults_when_no_config_file_found(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv(CREDIT_SERVICE_CONFIG_ENV, raising=False)
    monkeypatch.delenv("CREDIT_SERVICE_PORT", raising=False)
    monkeypatch.chdir(tmp_path)

    config = load_config()

    assert config.port == 8003
    assert config.credits.cost_of("DOCUMENT_UPLOAD") == 30
    assert config.credits.plan_of("enterprise") is not None
    assert config.credits.plan_of(None) is None
