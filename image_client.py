"""
image_client.py — scene artwork through the image relay.

Uses the relay's REST API directly with requests.
One request per turn: no retry loop and no circuit breaker here, image
generation is best-effort next to the story text.
"""

import requests

from errors import (
    ImageProviderError,
    InvalidCredentialsError,
    QuotaExceededError,
    RelayConfigError,
)
from game_log import log

GENERATE_PATH = "/api/generate-image"


class ImageClient:
    def __init__(self, api_key, relay_url="http://localhost:3001", timeout=120, http=None):
        self.api_key = api_key
        self.relay_url = relay_url.rstrip("/")
        self.timeout = timeout
        self.http = http or requests

    @classmethod
    def from_settings(cls, settings):
        return cls(
            settings.get("image_api_key"),
            relay_url=settings["relay_url"],
            timeout=settings["image_timeout"],
        )

    def generate(self, prompt):
        """
        Ask the relay for an image of the scene.

        Args:
            prompt: The image prompt returned with the turn

        Returns:
            The relay's image reference (data URI or URL), unchanged. None if
            the relay answered 200 without one.
        """
        if not self.api_key:
            raise RelayConfigError()

        log(f"[Image] Requesting artwork: {prompt[:100]}")
        response = self.http.post(
            f"{self.relay_url}{GENERATE_PATH}",
            headers={"Content-Type": "application/json"},
            json={"prompt": prompt},
            timeout=self.timeout,
        )

        if response.status_code != 200:
            error_data = _error_body(response)
            log(f"[Image] Relay error {response.status_code}: {error_data}", "error")

            if response.status_code == 429:
                raise QuotaExceededError(
                    "Image generation quota exceeded. Please check your Cloudflare plan/billing "
                    "or try again later."
                )
            if response.status_code == 401:
                raise InvalidCredentialsError(
                    "Invalid Cloudflare API Key. Please check your CLOUDFLARE_API_KEY environment variable."
                )
            detail = error_data.get("error") or error_data.get("details") or ""
            raise ImageProviderError(response.status_code, detail)

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            log(f"[Image] Relay returned 200 without a JSON object: {response.text[:300]!r}", "error")
            raise ImageProviderError(response.status_code, "Relay returned no image")
        return data.get("imageUrl")


def _error_body(response):
    try:
        data = response.json()
    except ValueError:
        return {"error": response.text[:300]}
    return data if isinstance(data, dict) else {"error": str(data)}
