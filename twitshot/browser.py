from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

NAVIGATION_TIMEOUT_MS = 35000

DEFAULT_WIDTH = 1152
DEFAULT_HEIGHT = 1536
DEFAULT_SCALE_FACTOR = 2

DESKTOP_CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_LAUNCH_ARGS = {
    "chromium": ["--no-sandbox", "--disable-dev-shm-usage", "--disable-gpu"],
}


@dataclass(frozen=True)
class ScreenshotConfig:
    type: str
    omit_background: bool
    quality: int | None = None

    @classmethod
    def for_engine(cls, engine: str) -> "ScreenshotConfig":
        if engine == "chromium":
            return cls(type="png", omit_background=True)
        return cls(type="jpeg", omit_background=False, quality=85)

    @property
    def media_type(self) -> str:
        return f"image/{self.type}"

    def kwargs(self) -> dict[str, Any]:
        out: dict[str, Any] = {"type": self.type, "omit_background": self.omit_background}
        if self.quality is not None:
            out["quality"] = self.quality
        return out


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _number(value: object, default: float) -> float:
    try:
        number = float(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default
    return number or default


def browser_dimensions(
    width: object = None,
    height: object = None,
    scale_factor: object = None,
) -> dict[str, Any]:
    s = _clamp(_number(scale_factor, DEFAULT_SCALE_FACTOR), 0.5, 3)
    w = int(_clamp(_number(width, DEFAULT_WIDTH), 100, 3000) * s)
    h = int(_clamp(_number(height, DEFAULT_HEIGHT), 100, 3000) * s)
    return {
        "viewport": {"width": w, "height": h},
        "screen": {"width": w, "height": h},
        "device_scale_factor": s,
    }


@dataclass
class BrowserService:
    """The one long-lived browser process; hands out isolated contexts."""

    engine: str = "chromium"
    application_info: str = ""
    screenshot_config: ScreenshotConfig = field(init=False)
    _playwright: Playwright | None = field(default=None, init=False, repr=False)
    _browser: Browser | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.screenshot_config = ScreenshotConfig.for_engine(self.engine)

    async def start(self) -> None:
        if self._browser is not None:
            return
        self._playwright = await async_playwright().start()
        launcher = getattr(self._playwright, self.engine)
        self._browser = await launcher.launch(headless=True, args=_LAUNCH_ARGS.get(self.engine, []))

    async def close(self) -> None:
        try:
            if self._browser is not None:
                await self._browser.close()
        finally:
            self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def new_context(self, **options: Any) -> BrowserContext:
        if self._browser is None:
            raise RuntimeError("Browser not started")
        context = await self._browser.new_context(
            **{
                "accept_downloads": False,
                "locale": "en-US",
                "color_scheme": "dark",
                "extra_http_headers": {
                    "x-application": self.application_info,
                    "x-is-twitshot": "true",
                },
                **browser_dimensions(),
                **options,
            }
        )
        context.set_default_navigation_timeout(NAVIGATION_TIMEOUT_MS)
        return context
