"""
HTTP client for OpenAI-compatible vision chat-completions servers.
"""

import os
from typing import Any, Dict, List, Optional

import requests
from loguru import logger


class VisionChatClient:
    """Owns the requests session, credentials and retry policy shared by the vision services."""

    default_max_tokens = 900

    def __init__(self, config: Optional[dict] = None):
        self.session = None
        self.server_url = None
        self.api_key = None
        if config is not None:
            self.initialize(config)

    def initialize(self, config: dict) -> None:
        """Read server settings and open the HTTP session."""
        self.server_url = config.get("server_url", "https://api.openai.com").rstrip("/")
        self.model_name = config.get("model_name", "gpt-4o-mini")
        self.timeout = config.get("timeout", 60)
        self.retries = max(0, int(config.get("retries", 2)))
        self.max_tokens = config.get("max_tokens", self.default_max_tokens)
        self.temperature = config.get("temperature", 0.1)
        self.jpeg_quality = config.get("jpeg_quality", 90)
        self.image_detail = config.get("image_detail", "low")
        self.api_key = os.environ.get(config.get("api_key_env", "OPENAI_API_KEY"))
        if not self.api_key:
            logger.warning(f"No API key in ${config.get('api_key_env', 'OPENAI_API_KEY')}; "
                           f"requests to {self.server_url} are sent unauthenticated")

        self.session = requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if self.api_key:
            self.session.headers.update({"Authorization": f"Bearer {self.api_key}"})

    def image_content(self, image_data_url: str) -> Dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": image_data_url, "detail": self.image_detail}}

    def chat_payload(self, system_prompt: str, content: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "model": self.model_name,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,  # Low temperature for consistent JSON output
        }

    def _request(self, payload: Dict[str, Any]) -> Optional[str]:
        """POST the payload, retrying network failures; returns the message content."""
        url = f"{self.server_url}/v1/chat/completions"
        for attempt in range(self.retries + 1):
            try:
                response = self.session.post(url, json=payload, timeout=self.timeout)
                response.raise_for_status()
                data = response.json()
            except requests.exceptions.HTTPError as e:
                body = e.response.text[:400] if e.response is not None else ""
                logger.error(f"Vision request failed: {e} {body}")
                return None
            except (requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"Network error with vision server (attempt {attempt + 1}/{self.retries + 1}): {e}")
                continue

            choices = data.get("choices") if isinstance(data, dict) else None
            if not choices:
                logger.warning("No choices in vision server response")
                return None
            content = (choices[0].get("message") or {}).get("content")
            return content.strip() if isinstance(content, str) else None

        logger.error(f"Vision server unreachable after {self.retries + 1} attempts")
        return None

    def cleanup(self) -> None:
        """Close the HTTP session."""
        if self.session is not None:
            self.session.close()
            self.session = None
