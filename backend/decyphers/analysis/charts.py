"""chart-img.com client: render TradingView advanced charts as images."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from decyphers.config import settings

logger = logging.getLogger(__name__)

ADVANCED_CHART_PATH = "/v2/tradingview/advanced-chart"

_DEFAULTS: dict[str, Any] = {
    "width": 800,
    "height": 600,
    "style": "candle",
    "theme": "light",
    "scale": "regular",
    "session": "regular",
    "timezone": "Etc/UTC",
    "format": "png",
}

# Optional keys forwarded untouched when present in the stored parameter
_PASSTHROUGH = ("override", "shiftLeft", "shiftRight", "watermark", "watermarkSize", "watermarkOpacity")


class ChartGenerationError(Exception):
    """The chart request could not be built or rendered."""


@dataclass(frozen=True)
class ChartImage:
    symbol: str
    interval: str
    content_type: str
    data: bytes


def _clean_items(items: Any) -> list[dict[str, Any]]:
    """Keep study/drawing entries that carry a name, dropping empty sub-keys."""
    cleaned = []
    for item in items or []:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        cleaned.append({key: value for key, value in item.items() if value not in (None, [], {})})
    return cleaned


def build_chart_payloads(parameter: dict[str, Any]) -> list[dict[str, Any]]:
    """One API payload per requested interval.

    ``parameter`` accepts either ``intervals`` (list) or a single ``interval``.
    """
    symbol = parameter.get("symbol")
    if not symbol:
        raise ChartGenerationError("Chart parameter is missing 'symbol'")

    intervals = parameter.get("intervals") or ([parameter["interval"]] if parameter.get("interval") else [])
    if not intervals:
        raise ChartGenerationError("Chart parameter has no intervals")

    payloads = []
    for interval in intervals:
        payload: dict[str, Any] = {"symbol": symbol, "interval": interval}
        for key, default in _DEFAULTS.items():
            payload[key] = parameter.get(key, default)
        studies = _clean_items(parameter.get("studies"))
        if studies:
            payload["studies"] = studies
        drawings = _clean_items(parameter.get("drawings"))
        if drawings:
            payload["drawings"] = drawings
        for key in _PASSTHROUGH:
            if parameter.get(key) is not None:
                payload[key] = parameter[key]
        payloads.append(payload)
    return payloads


async def render_chart(client: httpx.AsyncClient, payload: dict[str, Any]) -> ChartImage:
    response = await client.post(
        f"{settings.chart_img_base_url.rstrip('/')}{ADVANCED_CHART_PATH}",
        json=payload,
        headers={"x-api-key": settings.chart_img_api_key},
    )
    response.raise_for_status()
    content_type = response.headers.get("content-type", f"image/{payload.get('format', 'png')}")
    return ChartImage(
        symbol=payload["symbol"],
        interval=payload["interval"],
        content_type=content_type.split(";")[0],
        data=response.content,
    )


async def generate_charts(
    parameter: dict[str, Any], client: httpx.AsyncClient | None = None
) -> list[ChartImage]:
    """Render every interval in ``parameter``. HTTP failures propagate."""
    if not settings.chart_img_api_key:
        raise ChartGenerationError("CHART_IMG_API_KEY is not configured")

    payloads = build_chart_payloads(parameter)
    if client is not None:
        images = [await render_chart(client, payload) for payload in payloads]
    else:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as owned:
            images = [await render_chart(owned, payload) for payload in payloads]
    logger.info("Rendered %d chart(s) for %s", len(images), parameter.get("symbol"))
    return images
