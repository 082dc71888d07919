import httpx
import pytest
import respx

from urbanpulse.errors import ResolveFailed
from urbanpulse.geocode import NominatimResolver, build_resolver, format_coordinates


@pytest.mark.asyncio
async def test_resolve_returns_display_name():
    resolver = NominatimResolver("https://geo.test/", "UrbanPulse/1.0", timeout=2.0)
    async with respx.mock(base_url="https://geo.test") as respx_mock:
        route = respx_mock.get("/reverse").mock(
            return_value=httpx.Response(200, json={"display_name": "12 Marina Road, Lagos Island, Lagos"})
        )
        address = await resolver.resolve(6.5244, 3.3792)
    await resolver.aclose()

    assert address == "12 Marina Road, Lagos Island, Lagos"
    assert route.called
    request = route.calls.last.request
    assert request.headers["User-Agent"] == "UrbanPulse/1.0"
    assert request.url.params["lat"] == "6.5244"
    assert request.url.params["lon"] == "3.3792"
    assert request.url.params["format"] == "json"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="upstream error"),
        httpx.Response(200, json={"error": "Unable to geocode"}),
        httpx.Response(200, text="<html>not json</html>"),
    ],
)
async def test_unusable_responses_raise_resolve_failed(response):
    resolver = NominatimResolver("https://geo.test", "UrbanPulse/1.0", timeout=2.0)
    async with respx.mock(base_url="https://geo.test") as respx_mock:
        respx_mock.get("/reverse").mock(return_value=response)
        with pytest.raises(ResolveFailed):
            await resolver.resolve(6.5244, 3.3792)
    await resolver.aclose()


@pytest.mark.asyncio
async def test_transport_error_raises_resolve_failed():
    resolver = NominatimResolver("https://geo.test", "UrbanPulse/1.0", timeout=2.0)
    async with respx.mock(base_url="https://geo.test") as respx_mock:
        respx_mock.get("/reverse").mock(side_effect=httpx.ConnectTimeout("timed out"))
        with pytest.raises(ResolveFailed):
            await resolver.resolve(6.5244, 3.3792)
    await resolver.aclose()


@pytest.mark.asyncio
async def test_injected_client_is_not_closed():
    client = httpx.AsyncClient()
    resolver = NominatimResolver("https://geo.test", "UrbanPulse/1.0", timeout=2.0, client=client)

    await resolver.aclose()

    assert not client.is_closed
    await client.aclose()


def test_format_coordinates_uses_four_decimals():
    assert format_coordinates(6.52438, 3.37921) == "6.5244, 3.3792"
    assert format_coordinates(-33.9, 151.2) == "-33.9000, 151.2000"


def test_build_resolver_reads_settings():
    resolver = build_resolver()

    assert isinstance(resolver, NominatimResolver)
