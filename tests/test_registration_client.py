"""
Registration client tests - idempotent registration, validation, failure reporting
"""
import asyncio

from conftest import FakeProvider, ok
from shiptrack.services.registration_client import RegistrationClient, extract_short_link
from shiptrack.services.tracking_provider import ProviderResponse


def register(provider, tracking_number="ER123456789MY", courier="poslaju"):
    return asyncio.run(RegistrationClient(provider).register(tracking_number, courier))


class TestRegistration:
    """Registration outcomes"""

    def test_success_carries_short_link(self):
        """Successful registration carries the short link"""
        provider = FakeProvider(register=ok({"tracking": {"short_link": "https://trk.my/abc"}}, status_code=201))
        result = register(provider)
        assert result.success is True
        assert result.already_registered is False
        assert result.short_link == "https://trk.my/abc"

    def test_courier_code_is_normalized_before_sending(self):
        """Courier code is normalized before it is sent"""
        provider = FakeProvider()
        register(provider, tracking_number="  ER1MY ", courier=" PosLaju ")
        assert provider.calls == [("register", "ER1MY", "poslaju")]

    def test_conflict_status_is_success(self):
        """Conflict status counts as already registered"""
        provider = FakeProvider(register=ProviderResponse(ok=False, status_code=409, data={}, error="HTTP 409"))
        result = register(provider)
        assert result.success is True
        assert result.already_registered is True

    def test_already_exists_message_is_success(self):
        """An "already exists" message counts as success"""
        body = {"meta": {"code": 422, "error_message": "Tracking already exists."}}
        provider = FakeProvider(register=ProviderResponse(ok=False, status_code=422, data=body, error="Tracking already exists."))
        result = register(provider)
        assert result.success is True
        assert result.already_registered is True

    def test_rejection_is_reported_not_raised(self):
        """Rejection is returned as a failed result"""
        body = {"message": "Invalid tracking number format"}
        provider = FakeProvider(register=ProviderResponse(ok=False, status_code=422, data=body, error="HTTP 422"))
        result = register(provider)
        assert result.success is False
        assert result.error == "Invalid tracking number format"

    def test_provider_exception_is_reported(self):
        """Provider exceptions become a failed result"""
        provider = FakeProvider(register=RuntimeError("connection reset"))
        result = register(provider)
        assert result.success is False
        assert "connection reset" in result.error


class TestValidation:
    """Input checks before any provider call"""

    def test_blank_input_never_reaches_provider(self):
        """Blank tracking number or courier is rejected locally"""
        provider = FakeProvider()
        assert register(provider, tracking_number=" ").success is False
        assert register(provider, courier="").success is False
        assert provider.calls == []

    def test_unknown_courier(self):
        """Unknown courier is rejected locally"""
        provider = FakeProvider()
        result = register(provider, courier="pigeon")
        assert result.success is False
        assert result.error == "Unknown courier code: pigeon"
        assert provider.calls == []


class TestExtractShortLink:
    """Short link lookup across response shapes"""

    def test_shapes(self):
        """Short link is found in every known response shape"""
        assert extract_short_link({"tracking": {"short_link": "a"}}) == "a"
        assert extract_short_link({"data": {"shortLink": "b"}}) == "b"
        assert extract_short_link({"short_link": " c "}) == "c"
        assert extract_short_link({"tracking": {"short_link": ""}}) is None
        assert extract_short_link(None) is None
