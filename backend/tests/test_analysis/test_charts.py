"""Tests for chart payload building, chart rendering and LLM analysis."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from decyphers.analysis.analyzer import analyze_charts
from decyphers.analysis.charts import (
    ADVANCED_CHART_PATH,
    ChartGenerationError,
    ChartImage,
    build_chart_payloads,
    generate_charts,
)
from decyphers.config import settings


class TestBuildPayloads:
    def test_one_payload_per_interval_with_defaults(self):
        payloads = build_chart_payloads({"symbol": "FX:EURUSD", "intervals": ["1h", "4h"], "theme": "dark"})

        assert [p["interval"] for p in payloads] == ["1h", "4h"]
        first = payloads[0]
        assert first["symbol"] == "FX:EURUSD"
        assert first["theme"] == "dark"
        assert (first["width"], first["height"], first["format"]) == (800, 600, "png")
        assert "studies" not in first

    def test_single_interval_key(self):
        payloads = build_chart_payloads({"symbol": "BINANCE:BTCUSDT", "interval": "1D"})
        assert [p["interval"] for p in payloads] == ["1D"]

    def test_studies_cleaned_and_passthrough_kept(self):
        parameter = {
            "symbol": "FX:EURUSD",
            "intervals": ["1h"],
            "studies": [{"name": "RSI", "input": {"length": 14}, "override": {}}, {"input": {}}],
            "watermark": "Decyphers",
        }
        (payload,) = build_chart_payloads(parameter)
        assert payload["studies"] == [{"name": "RSI", "input": {"length": 14}}]
        assert payload["watermark"] == "Decyphers"

    def test_missing_symbol(self):
        with pytest.raises(ChartGenerationError, match="symbol"):
            build_chart_payloads({"intervals": ["1h"]})

    def test_missing_intervals(self):
        with pytest.raises(ChartGenerationError, match="intervals"):
            build_chart_payloads({"symbol": "FX:EURUSD", "intervals": []})


class TestGenerateCharts:
    @pytest.mark.asyncio
    async def test_renders_each_interval(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})

        with patch.object(settings, "chart_img_api_key", "chart-key"):
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                images = await generate_charts({"symbol": "FX:EURUSD", "intervals": ["1h", "4h"]}, client=client)

        assert [image.interval for image in images] == ["1h", "4h"]
        assert images[0].data == b"\x89PNG"
        assert images[0].content_type == "image/png"
        assert requests[0].url.path == ADVANCED_CHART_PATH
        assert requests[0].headers["x-api-key"] == "chart-key"
        assert json.loads(requests[1].content)["interval"] == "4h"

    @pytest.mark.asyncio
    async def test_requires_api_key(self):
        with patch.object(settings, "chart_img_api_key", ""):
            with pytest.raises(ChartGenerationError):
                await generate_charts({"symbol": "FX:EURUSD", "intervals": ["1h"]})

    @pytest.mark.asyncio
    async def test_http_error_propagates(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(429, json={"message": "limit"}))
        with patch.object(settings, "chart_img_api_key", "chart-key"):
            async with httpx.AsyncClient(transport=transport) as client:
                with pytest.raises(httpx.HTTPStatusError):
                    await generate_charts({"symbol": "FX:EURUSD", "intervals": ["1h"]}, client=client)


class TestAnalyzeCharts:
    @pytest.mark.asyncio
    async def test_sends_images_and_counts_tokens(self):
        llm = SimpleNamespace(
            ainvoke=AsyncMock(
                return_value=SimpleNamespace(content="Bullish bias", usage_metadata={"total_tokens": 1834})
            )
        )
        images = [ChartImage(symbol="FX:EURUSD", interval="1h", content_type="image/png", data=b"abc")]

        result = await analyze_charts("FX:EURUSD", images, llm=llm)

        assert result.text == "Bullish bias"
        assert result.tokens_used == 1834
        system, human = llm.ainvoke.await_args.args[0]
        assert isinstance(system, SystemMessage)
        assert isinstance(human, HumanMessage)
        image_part = human.content[1]
        assert image_part["image_url"]["url"] == "data:image/png;base64,YWJj"

    @pytest.mark.asyncio
    async def test_content_blocks_joined(self):
        llm = SimpleNamespace(
            ainvoke=AsyncMock(
                return_value=SimpleNamespace(
                    content=[{"type": "text", "text": "Part one. "}, {"type": "text", "text": "Part two."}],
                    usage_metadata=None,
                )
            )
        )
        images = [ChartImage(symbol="FX:EURUSD", interval="4h", content_type="image/png", data=b"x")]

        result = await analyze_charts("FX:EURUSD", images, llm=llm)
        assert result.text == "Part one. Part two."
        assert result.tokens_used == 0

    @pytest.mark.asyncio
    async def test_requires_images(self):
        with pytest.raises(ValueError):
            await analyze_charts("FX:EURUSD", [], llm=SimpleNamespace(ainvoke=AsyncMock()))
