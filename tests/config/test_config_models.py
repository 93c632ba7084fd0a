from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from auction_ingest.config import (
    EnqueueOptions,
    EnqueueRequest,
    FetchConfig,
    GlobalConfig,
    ScheduleConfig,
    ScheduleType,
    SeedJob,
    VendorConfig,
)


def test_enqueue_options_defaults() -> None:
    options = EnqueueOptions()
    assert options.year_from == 2012
    assert options.year_to == datetime.now().year
    assert options.days_back == 150
    assert options.site == 1
    assert options.specific_model is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"year_from": 1989},
        {"year_from": datetime.now().year + 1},
        {"year_from": 2015, "year_to": 2014},
        {"days_back": 0},
        {"days_back": 366},
        {"site": 3},
        {"priority": -1},
    ],
)
def test_enqueue_options_rejects_out_of_range(overrides) -> None:
    with pytest.raises(ValidationError):
        EnqueueOptions(**overrides)


@pytest.mark.parametrize("value", ["", "  ", "all", "undefined", None])
def test_blank_model_means_discovery(value) -> None:
    assert EnqueueOptions(specific_model=value).specific_model is None


def test_enqueue_request_requires_make() -> None:
    with pytest.raises(ValidationError):
        EnqueueRequest(make="   ")
    request = EnqueueRequest(make=" Honda ", specific_model="Civic", site=2)
    options = request.options()
    assert request.make == "Honda"
    assert options.site == 2
    assert options.specific_model == "Civic"


def test_fetch_config_delay_range() -> None:
    assert FetchConfig().inter_page_delay == (2.0, 3.0)
    assert FetchConfig(inter_page_delay=[1, 4]).inter_page_delay == (1.0, 4.0)
    with pytest.raises(ValidationError):
        FetchConfig(inter_page_delay=(3, 2))
    with pytest.raises(ValidationError):
        FetchConfig(skip_if_existing_at_least=0)


def test_vendor_key_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUCTION_INGEST_API_KEY", "secret")
    assert VendorConfig().api_key == "secret"
    assert VendorConfig(api_key="explicit").api_key == "explicit"


def test_schedule_validation() -> None:
    assert ScheduleConfig().value == {"hours": 24}
    with pytest.raises(ValidationError):
        ScheduleConfig(type=ScheduleType.CRON, value=5)
    with pytest.raises(ValidationError):
        ScheduleConfig(type=ScheduleType.INTERVAL, value="daily")


def test_seed_sites_and_priority_makes() -> None:
    with pytest.raises(ValidationError):
        SeedJob(make="Honda", sites=[1, 5])
    config = GlobalConfig()
    assert len(config.seeds) == 10
    assert "bmw" in config.priority_makes()
    assert all(seed.sites == [1, 2] for seed in config.seeds)


def test_database_path_resolution(tmp_path) -> None:
    config = GlobalConfig(database_path="data/x.db")
    assert config.resolved_database_path(tmp_path) == (tmp_path / "data" / "x.db").resolve()
    absolute = tmp_path / "abs.db"
    assert GlobalConfig(database_path=absolute).resolved_database_path(tmp_path) == absolute
