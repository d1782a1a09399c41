import httpx
import pytest

from fixit.llm_service import (
    GeminiService,
    LLMServiceError,
    fallback_resolution_score,
    get_llm_service,
    parse_classification,
)


def test_parse_plain_json():
    result = parse_classification(
        '{"title": "Deep Pothole", "description": "A deep pothole.", "category": "Roads",'
        ' "severity": "HIGH", "tags": ["pothole", "road damage"], "is_relevant": true}'
    )

    assert result.title == "Deep Pothole"
    assert result.category == "roads"
    assert result.severity == "high"
    assert result.tags == ["pothole", "road damage"]
    assert result.is_relevant
    assert result.category_supported


def test_parse_strips_markdown_fences():
    result = parse_classification('```json\n{"title": "Dark lamp", "category": "lighting"}\n```')

    assert result.title == "Dark lamp"
    assert result.category == "lighting"
    assert result.severity is None


def test_parse_flags_irrelevant_and_unsupported():
    result = parse_classification('{"title": "Cat", "category": "pets", "is_relevant": false}')

    assert not result.is_relevant
    assert not result.category_supported


def test_parse_rejects_non_json():
    with pytest.raises(LLMServiceError):
        parse_classification("not json at all")
    with pytest.raises(LLMServiceError):
        parse_classification("[1, 2, 3]")


@pytest.mark.parametrize(
    "before, work_started, score",
    [(False, False, 85), (True, False, 90), (True, True, 95)],
)
def test_fallback_resolution_score(before, work_started, score):
    assert fallback_resolution_score(before, work_started) == score


def test_service_is_disabled_without_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)

    assert get_llm_service() is None


def test_service_uses_configured_model(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-test")

    service = get_llm_service()

    assert isinstance(service, GeminiService)
    assert service.model == "gemini-test"


def test_image_hosts_come_from_environment(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("IMAGE_FETCH_HOSTS", "res.cloudinary.com, cdn.city.gov")

    service = get_llm_service()

    assert service.image_hosts == {"res.cloudinary.com", "cdn.city.gov"}


class FakeResponse:
    content = b"jpeg-bytes"
    headers = {"content-type": "image/jpeg"}

    def raise_for_status(self):
        pass


async def test_download_only_fetches_trusted_hosts(monkeypatch):
    fetched = []

    async def fake_get(self, url, **kwargs):
        fetched.append(url)
        return FakeResponse()

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    service = GeminiService("test-key")

    internal = await service._download("http://169.254.169.254/latest/meta-data/")
    relative = await service._download("/uploads/issues/a.jpg")
    trusted = await service._download("https://res.cloudinary.com/fixit/image/upload/a.jpg")

    assert internal is None
    assert relative is None
    assert trusted == (b"jpeg-bytes", "image/jpeg")
    assert fetched == ["https://res.cloudinary.com/fixit/image/upload/a.jpg"]
