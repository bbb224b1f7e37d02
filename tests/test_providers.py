"""
Tests for the image and video generation providers.

HTTP traffic is answered by httpx.MockTransport; poll sleeps are patched out.
"""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from reelforge.core.exceptions import ConfigurationError, ProviderError
from reelforge.providers.base import ImageRequest, VideoRequest, aspect_ratio_for, parse_size
from reelforge.providers.factory import create_image_generator, create_video_generator, provider_slug
from reelforge.providers.image import (
    FalImageGenerator,
    FalNanobanana,
    FalSeedream40,
    FalSeedream45,
    WavespeedImageGenerator,
    WavespeedNanobanana,
    WavespeedSeedream45,
    scale_to_min_pixels,
)
from reelforge.providers.media import url_to_data_uri
from reelforge.providers.video import FalWan, WavespeedWan, extract_wavespeed_video_url, poll_interval


def image_request(**overrides) -> ImageRequest:
    values = {
        "prompt": "swap",
        "ref_image_urls": ["https://cdn/cover.jpg", "https://cdn/character.jpg"],
        "num_images": 4,
        "size": "720x1280",
    }
    values.update(overrides)
    return ImageRequest(**values)


class TestFactory:
    @pytest.mark.parametrize("base", [FalImageGenerator, WavespeedImageGenerator])
    def test_provider_bases_are_abstract(self, base):
        with pytest.raises(TypeError):
            base("key", httpx.AsyncClient())

    def test_provider_slug(self):
        assert provider_slug("FAL.ai") == "fal"
        assert provider_slug("Wavespeed") == "wavespeed"

    def test_unknown_provider_raises(self):
        with pytest.raises(ConfigurationError, match="Unknown API provider"):
            provider_slug("Replicate")

    @pytest.mark.parametrize(
        "provider,model,expected",
        [
            ("FAL.ai", "Seedream 4.0", FalSeedream40),
            ("FAL.ai", "Seedream 4.5", FalSeedream45),
            ("FAL.ai", "Nanobanana Pro", FalNanobanana),
            ("Wavespeed", "Seedream 4.5", WavespeedSeedream45),
            ("Wavespeed", "Nanobanana Pro", WavespeedNanobanana),
        ],
    )
    def test_image_generator_selection(self, provider, model, expected):
        generator = create_image_generator(provider, model, "key", httpx.AsyncClient())

        assert type(generator) is expected

    def test_unknown_model_falls_back_to_seedream_45(self):
        assert type(create_image_generator("FAL.ai", "Imagen 9", "key", httpx.AsyncClient())) is FalSeedream45
        assert type(create_image_generator("Wavespeed", "", "key", httpx.AsyncClient())) is WavespeedSeedream45

    def test_video_generator_selection(self):
        assert type(create_video_generator("FAL.ai", "key", httpx.AsyncClient())) is FalWan
        assert type(create_video_generator("Wavespeed", "key", httpx.AsyncClient())) is WavespeedWan


class TestSizing:
    def test_parse_size(self):
        assert parse_size("720x1280") == (720, 1280)

    def test_parse_size_invalid(self):
        with pytest.raises(ProviderError):
            parse_size("portrait")

    def test_aspect_ratio_for(self):
        assert aspect_ratio_for(720, 1280) == "9:16"
        assert aspect_ratio_for(1920, 1080) == "16:9"
        assert aspect_ratio_for(1080, 1080) == "1:1"
        assert aspect_ratio_for(1080, 1350) == "3:4"

    def test_scale_to_min_pixels_scales_small_sizes(self):
        width, height = scale_to_min_pixels(720, 1280)

        assert (width, height) == (1080, 1920)
        assert width * height >= 2073600

    def test_scale_to_min_pixels_keeps_large_sizes(self):
        assert scale_to_min_pixels(1920, 1080) == (1920, 1080)

    def test_scale_to_min_pixels_rounds_to_multiple_of_8(self):
        width, height = scale_to_min_pixels(500, 700)

        assert width % 8 == 0
        assert height % 8 == 0
        assert width * height >= 2073600


class TestFalImage:
    @pytest.mark.asyncio
    async def test_generate_posts_and_parses_images(self, mock_client):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"images": [{"url": "https://fal/1.png"}, {"url": "https://fal/2.png"}]})

        async with mock_client(handler) as client:
            images = await FalSeedream45("fal-key", client).generate(image_request(enable_nsfw=True))

        assert [image.url for image in images] == ["https://fal/1.png", "https://fal/2.png"]
        assert seen["url"] == "https://fal.run/fal-ai/bytedance/seedream/v4.5/edit"
        assert seen["auth"] == "Key fal-key"
        assert seen["body"]["image_size"] == {"width": 720, "height": 1280}
        assert seen["body"]["num_images"] == 4
        assert seen["body"]["enable_safety_checker"] is False

    @pytest.mark.asyncio
    async def test_nanobanana_caps_images_and_uses_aspect_ratio(self, mock_client):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"images": [{"url": "https://fal/1.png"}]})

        async with mock_client(handler) as client:
            await FalNanobanana("k", client).generate(image_request(num_images=8))

        assert seen["body"]["num_images"] == 4
        assert seen["body"]["aspect_ratio"] == "9:16"
        assert seen["body"]["resolution"] == "2K"

    @pytest.mark.asyncio
    async def test_empty_images_raise(self, mock_client):
        async with mock_client(lambda request: httpx.Response(200, json={"images": []})) as client:
            with pytest.raises(ProviderError, match="FAL returned no images"):
                await FalSeedream45("k", client).generate(image_request())

    @pytest.mark.asyncio
    async def test_http_error_raises_with_excerpt(self, mock_client):
        async with mock_client(lambda request: httpx.Response(403, text="Forbidden")) as client:
            with pytest.raises(ProviderError, match="FAL API error 403: Forbidden"):
                await FalSeedream45("k", client).generate(image_request())

    @pytest.mark.asyncio
    async def test_key_supplier_called_per_request(self, mock_client):
        keys = iter(["key-1", "key-2"])
        auth = []

        def handler(request: httpx.Request) -> httpx.Response:
            auth.append(request.headers["Authorization"])
            return httpx.Response(200, json={"images": [{"url": "u"}]})

        async with mock_client(handler) as client:
            generator = FalSeedream45(lambda: next(keys), client)
            await generator.generate(image_request())
            await generator.generate(image_request())

        assert auth == ["Key key-1", "Key key-2"]


class TestWavespeedImage:
    @pytest.mark.asyncio
    async def test_generate_filters_data_uris_and_scales(self, mock_client):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"code": 200, "data": {"status": "completed", "outputs": ["https://ws/1.png"]}})

        request = image_request(ref_image_urls=["data:image/png;base64,AAAA", "https://cdn/character.jpg"])
        async with mock_client(handler) as client:
            images = await WavespeedSeedream45("ws-key", client).generate(request)

        assert [image.url for image in images] == ["https://ws/1.png"]
        assert seen["url"] == "https://api.wavespeed.ai/api/v3/bytedance/seedream-v4.5/edit"
        assert seen["auth"] == "Bearer ws-key"
        assert seen["body"]["images"] == ["https://cdn/character.jpg"]
        assert seen["body"]["size"] == "1080*1920"
        assert seen["body"]["enable_sync_mode"] is True

    @pytest.mark.asyncio
    async def test_only_data_uris_rejected(self, mock_client):
        async with mock_client(lambda request: httpx.Response(500)) as client:
            with pytest.raises(ProviderError, match="requires HTTP URLs"):
                await WavespeedSeedream45("k", client).generate(image_request(ref_image_urls=["data:x"]))

    @pytest.mark.asyncio
    async def test_failed_status_raises(self, mock_client):
        body = {"code": 200, "data": {"status": "failed", "error": "nsfw content"}}
        async with mock_client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(ProviderError, match="nsfw content"):
                await WavespeedSeedream45("k", client).generate(image_request())

    @pytest.mark.asyncio
    async def test_non_200_code_raises(self, mock_client):
        body = {"code": 400, "message": "bad size"}
        async with mock_client(lambda request: httpx.Response(200, json=body)) as client:
            with pytest.raises(ProviderError, match="bad size"):
                await WavespeedSeedream45("k", client).generate(image_request())


class TestFalVideo:
    @pytest.mark.asyncio
    async def test_submit_poll_and_fetch(self, mock_client):
        statuses = iter(["IN_QUEUE", "IN_PROGRESS", "COMPLETED"])

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if request.method == "POST":
                assert path == "/fal-ai/wan/v2.2-14b/animate/replace"
                assert json.loads(request.content)["resolution"] == "720p"
                return httpx.Response(200, json={"request_id": "req-1"})
            if path.endswith("/status"):
                return httpx.Response(200, json={"status": next(statuses)})
            assert path == "/fal-ai/wan/requests/req-1"
            return httpx.Response(200, json={"video": {"url": "https://fal/out.mp4"}})

        with patch("reelforge.providers.video.asyncio.sleep", new=AsyncMock()) as sleep:
            async with mock_client(handler) as client:
                video = await FalWan("k", client).generate(
                    VideoRequest(video_url="https://src.mp4", image_url="https://img.png", resolution="720p")
                )

        assert video.url == "https://fal/out.mp4"
        assert [call.args[0] for call in sleep.await_args_list] == [5, 10, 15]

    @pytest.mark.asyncio
    async def test_failed_job_raises(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"request_id": "req-1"})
            return httpx.Response(200, json={"status": "FAILED", "error": "bad input"})

        with patch("reelforge.providers.video.asyncio.sleep", new=AsyncMock()):
            async with mock_client(handler) as client:
                with pytest.raises(ProviderError, match="FAL job failed: bad input"):
                    await FalWan("k", client).generate(VideoRequest(video_url="v", image_url="i"))

    @pytest.mark.asyncio
    async def test_missing_request_id_raises(self, mock_client):
        async with mock_client(lambda request: httpx.Response(200, json={})) as client:
            with pytest.raises(ProviderError, match="request_id"):
                await FalWan("k", client).generate(VideoRequest(video_url="v", image_url="i"))

    def test_poll_interval_schedule(self):
        assert [poll_interval(i) for i in range(7)] == [5, 10, 15, 20, 30, 30, 30]


class TestWavespeedVideo:
    @pytest.mark.asyncio
    async def test_submit_and_poll(self, mock_client):
        polls = iter(
            [
                httpx.Response(503),
                httpx.Response(200, json={"data": {"status": "processing"}}),
                httpx.Response(200, json={"data": {"status": "completed", "outputs": ["https://ws/out.mp4"]}}),
            ]
        )

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                body = json.loads(request.content)
                assert body["mode"] == "replace"
                assert body["image"] == "https://img.png"
                return httpx.Response(200, json={"code": 200, "data": {"id": "pred-1"}})
            assert request.url.path == "/api/v3/predictions/pred-1/result"
            return next(polls)

        with patch("reelforge.providers.video.asyncio.sleep", new=AsyncMock()):
            async with mock_client(handler) as client:
                video = await WavespeedWan("k", client).generate(
                    VideoRequest(video_url="https://src.mp4", image_url="https://img.png")
                )

        assert video.url == "https://ws/out.mp4"

    @pytest.mark.asyncio
    async def test_failed_job_raises(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"code": 200, "data": {"id": "pred-1"}})
            return httpx.Response(200, json={"data": {"status": "failed", "error": "face not found"}})

        with patch("reelforge.providers.video.asyncio.sleep", new=AsyncMock()):
            async with mock_client(handler) as client:
                with pytest.raises(ProviderError, match="face not found"):
                    await WavespeedWan("k", client).generate(VideoRequest(video_url="v", image_url="i"))

    def test_extract_video_url_shapes(self):
        assert extract_wavespeed_video_url({"outputs": ["a.mp4"]}) == "a.mp4"
        assert extract_wavespeed_video_url({"data": {"outputs": ["b.mp4"]}}) == "b.mp4"
        assert extract_wavespeed_video_url({"data": {"video": "c.mp4"}}) == "c.mp4"
        assert extract_wavespeed_video_url({"video": "d.mp4"}) == "d.mp4"
        assert extract_wavespeed_video_url({"data": {}}) is None


class TestMedia:
    @pytest.mark.asyncio
    async def test_url_to_data_uri(self, mock_client):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})

        async with mock_client(handler) as client:
            uri = await url_to_data_uri("https://cdn/img.png", client)

        assert uri == "data:image/png;base64,iVBORw=="

    @pytest.mark.asyncio
    async def test_data_uri_passthrough(self, mock_client):
        async with mock_client(lambda request: httpx.Response(500)) as client:
            assert await url_to_data_uri("data:image/png;base64,AA", client) == "data:image/png;base64,AA"

    @pytest.mark.asyncio
    async def test_fetch_failure_raises(self, mock_client):
        async with mock_client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(ProviderError, match="404"):
                await url_to_data_uri("https://cdn/missing.png", client)
