"""Classic WebDriver HTTP helpers used to obtain a BiDi WebSocket URL."""

from dataclasses import dataclass, field
from typing import Any

import httpx

from bidilog.core.bidi_client import capabilities_websocket_url
from bidilog.core.exceptions import DriverNotFoundError, SessionNotCreatedError

DEFAULT_DRIVER_URL = "http://127.0.0.1:4444"

_HEADLESS_OPTIONS = {
    "firefox": ("moz:firefoxOptions", "-headless"),
    "chrome": ("goog:chromeOptions", "--headless=new"),
}


def build_capabilities(
    *,
    browser_name: str | None = None,
    headless: bool = False,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build ``alwaysMatch`` capabilities that request a BiDi WebSocket."""
    always_match: dict[str, Any] = {"webSocketUrl": True}
    if browser_name:
        always_match["browserName"] = browser_name
    if headless and browser_name in _HEADLESS_OPTIONS:
        key, arg = _HEADLESS_OPTIONS[browser_name]
        always_match[key] = {"args": [arg]}
    if extra:
        always_match.update(extra)
    return {"capabilities": {"alwaysMatch": always_match}}


@dataclass
class WebDriverSession:
    """A classic WebDriver session created with BiDi enabled."""

    driver_url: str
    session_id: str
    capabilities: dict[str, Any] = field(default_factory=dict)

    @property
    def websocket_url(self) -> str:
        return capabilities_websocket_url(self.capabilities)

    @classmethod
    async def create(
        cls,
        driver_url: str = DEFAULT_DRIVER_URL,
        *,
        browser_name: str | None = None,
        headless: bool = False,
        extra_capabilities: dict[str, Any] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "WebDriverSession":
        """POST /session and return the new session."""
        payload = build_capabilities(
            browser_name=browser_name, headless=headless, extra=extra_capabilities
        )
        async with httpx.AsyncClient(transport=transport) as client:
            try:
                response = await client.post(f"{driver_url}/session", json=payload, timeout=60.0)
            except httpx.ConnectError as e:
                raise DriverNotFoundError(
                    f"Cannot connect to WebDriver at {driver_url}. "
                    "Is geckodriver or chromedriver running?"
                ) from e

        value = _response_value(response)
        if response.is_error:
            raise SessionNotCreatedError(
                f"WebDriver returned {response.status_code}: {value.get('message', response.text)}"
            )

        session_id = value.get("sessionId")
        if not session_id:
            raise SessionNotCreatedError("WebDriver response has no sessionId")
        return cls(driver_url=driver_url, session_id=session_id, capabilities=value.get("capabilities", {}))

    async def delete(self, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """DELETE the session, which also quits the browser."""
        async with httpx.AsyncClient(transport=transport) as client:
            try:
                response = await client.delete(f"{self.driver_url}/session/{self.session_id}", timeout=30.0)
                response.raise_for_status()
            except httpx.ConnectError as e:
                raise DriverNotFoundError(f"Cannot connect to WebDriver at {self.driver_url}") from e
            except httpx.HTTPStatusError as e:
                raise SessionNotCreatedError(f"Failed to delete session: {e}") from e


def _response_value(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    value = data.get("value") if isinstance(data, dict) else None
    return value if isinstance(value, dict) else {}


async def check_driver_status(
    driver_url: str = DEFAULT_DRIVER_URL,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Check if a WebDriver server is reachable and ready for new sessions."""
    async with httpx.AsyncClient(transport=transport) as client:
        try:
            response = await client.get(f"{driver_url}/status", timeout=5.0)
        except httpx.HTTPError:
            return False
    if response.is_error:
        return False
    return bool(_response_value(response).get("ready", False))
