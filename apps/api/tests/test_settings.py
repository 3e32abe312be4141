from hotelmarket_api.core.settings import DEFAULT_SERVICE_TYPES, Settings


def test_service_types_accept_comma_separated_env(monkeypatch) -> None:
    monkeypatch.setenv("LOYALTY_SERVICE_TYPES", "Laundry, dining,,tourism")

    configured = Settings(_env_file=None)

    assert configured.loyalty_service_types == ["laundry", "dining", "tourism"]


def test_service_types_default_when_unset(monkeypatch) -> None:
    monkeypatch.delenv("LOYALTY_SERVICE_TYPES", raising=False)

    configured = Settings(_env_file=None)

    assert configured.loyalty_service_types == DEFAULT_SERVICE_TYPES


def test_service_types_accept_python_lists() -> None:
    configured = Settings(_env_file=None, loyalty_service_types=[" Dining ", "TRAVEL"])

    assert configured.loyalty_service_types == ["dining", "travel"]
