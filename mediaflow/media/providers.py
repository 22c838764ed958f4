"""Generative-media provider clients.

Every client speaks the same small contract: ``generate`` returns either an
``AssetRef`` (the asset is ready) or a ``JobHandle`` (poll with
``poll_status``). Errors surface as ``ProviderError`` subclasses whose
message is all the batch executors inspect.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

import httpx

from ..config import AppConfig
from ..core.error_recovery import RetryConfig, execute_with_retry
from ..core.exceptions import ConfigurationError, ProviderError, RateLimitError, TransientError
from ..core.logging import get_logger


logger = get_logger(__name__)


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED)


@dataclass(frozen=True)
class AssetRef:
    """A finished asset, either remote (``url``) or inline (``content``)."""
    url: Optional[str] = None
    content: Optional[bytes] = None


@dataclass(frozen=True)
class JobHandle:
    job_id: str


@dataclass(frozen=True)
class JobStatus:
    state: JobState
    output: Optional[AssetRef] = None
    failure_reason: Optional[str] = None


GenerateResult = Union[AssetRef, JobHandle]


class ProviderClient(ABC):
    """Vendor-agnostic generation contract."""

    name = "provider"

    @abstractmethod
    def generate(self, model_id: str, input: Dict[str, Any]) -> GenerateResult:
        """Start a generation; return the asset or a job to poll."""

    def poll_status(self, job_id: str) -> JobStatus:
        raise ProviderError(f"{self.name} does not run asynchronous jobs", provider=self.name)

    def close(self) -> None:
        pass


def _first_output(output: Any) -> Optional[str]:
    if isinstance(output, list):
        return output[0] if output else None
    return output or None


class HttpJsonClient:
    """Shared httpx plumbing: status mapping and retries of transient failures."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        headers: Dict[str, str],
        timeout: float = 120.0,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        def send() -> Dict[str, Any]:
            try:
                response = self._client.request(method, path, **kwargs)
            except httpx.TimeoutException as e:
                raise TransientError(f"{self.name} request timed out: {e}") from e
            except httpx.TransportError as e:
                raise TransientError(f"{self.name} connection error: {e}") from e
            return self._handle_response(response)

        send.__name__ = f"{self.name}_{method.lower()}"
        return execute_with_retry(send, self.retry_config)

    def _handle_response(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code == 429:
            raise RateLimitError(
                f"{self.name} rate limit exceeded (429): {self._error_detail(response)}",
                provider=self.name,
            )
        if response.status_code >= 500:
            raise TransientError(
                f"{self.name} server error ({response.status_code}): {self._error_detail(response)}"
            )
        if response.status_code >= 400:
            raise ProviderError(
                f"{self.name} request failed ({response.status_code}): {self._error_detail(response)}",
                provider=self.name,
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name} returned invalid JSON", provider=self.name) from e

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200] or response.reason_phrase
        if isinstance(body, dict):
            for key in ("detail", "error", "message", "msg"):
                if body.get(key):
                    return str(body[key])
        return str(body)[:200]

    def close(self) -> None:
        self._client.close()


class HttpProviderClient(HttpJsonClient, ProviderClient):
    """Provider client backed by a JSON HTTP API."""


class ReplicateClient(HttpProviderClient):
    """Replicate predictions API (image models)."""

    name = "replicate"

    _STATES = {
        "starting": JobState.PENDING,
        "processing": JobState.RUNNING,
        "succeeded": JobState.SUCCEEDED,
        "failed": JobState.FAILED,
        "canceled": JobState.FAILED,
    }

    def __init__(self, api_key: str, base_url: str = "https://api.replicate.com/v1", **kwargs):
        super().__init__(
            base_url,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Prefer": "wait",
            },
            **kwargs,
        )

    def generate(self, model_id: str, input: Dict[str, Any]) -> GenerateResult:
        payload = self._request("POST", f"/models/{model_id}/predictions", json={"input": input})
        status = self._status_from_payload(payload)
        if status.state == JobState.SUCCEEDED:
            if status.output is None:
                raise ProviderError("No output returned from Replicate", provider=self.name)
            return status.output
        if status.state == JobState.FAILED:
            raise ProviderError(status.failure_reason or "Prediction failed", provider=self.name)
        return JobHandle(job_id=payload["id"])

    def poll_status(self, job_id: str) -> JobStatus:
        return self._status_from_payload(self._request("GET", f"/predictions/{job_id}"))

    def _status_from_payload(self, payload: Dict[str, Any]) -> JobStatus:
        state = self._STATES.get(payload.get("status"), JobState.RUNNING)
        if state == JobState.SUCCEEDED:
            url = _first_output(payload.get("output"))
            return JobStatus(state=state, output=AssetRef(url=url) if url else None)
        if state == JobState.FAILED:
            return JobStatus(state=state, failure_reason=payload.get("error") or payload.get("status"))
        return JobStatus(state=state)


class RunwayClient(HttpProviderClient):
    """Runway task API (video models)."""

    name = "runway"

    _STATES = {
        "PENDING": JobState.PENDING,
        "THROTTLED": JobState.PENDING,
        "RUNNING": JobState.RUNNING,
        "SUCCEEDED": JobState.SUCCEEDED,
        "FAILED": JobState.FAILED,
        "CANCELLED": JobState.FAILED,
    }

    # Runway expects pixel ratios; friendly aspect ratios are mapped per model family
    _RATIOS = {
        "gen3a_turbo": {"16:9": "1280:768", "9:16": "768:1280"},
        "default": {
            "16:9": "1280:720",
            "9:16": "720:1280",
            "1:1": "960:960",
            "4:3": "1104:832",
            "3:4": "832:1104",
            "21:9": "1584:672",
        },
    }

    def __init__(
        self,
        api_secret: str,
        base_url: str = "https://api.dev.runwayml.com/v1",
        api_version: str = "2024-11-06",
        **kwargs,
    ):
        super().__init__(
            base_url,
            headers={
                "Authorization": f"Bearer {api_secret}",
                "Content-Type": "application/json",
                "X-Runway-Version": api_version,
            },
            **kwargs,
        )

    @classmethod
    def map_ratio(cls, model_id: str, aspect_ratio: str) -> str:
        table = cls._RATIOS.get(model_id, cls._RATIOS["default"])
        return table.get(aspect_ratio, aspect_ratio)

    def generate(self, model_id: str, input: Dict[str, Any]) -> GenerateResult:
        body = {
            "model": model_id,
            "promptText": input.get("promptText", ""),
            "duration": input.get("duration", 5),
            "ratio": self.map_ratio(model_id, input.get("ratio", "16:9")),
        }
        if input.get("promptImage"):
            body["promptImage"] = input["promptImage"]
            path = "/image_to_video"
        else:
            path = "/text_to_video"
        payload = self._request("POST", path, json=body)
        if not payload.get("id"):
            raise ProviderError("Runway did not return a task id", provider=self.name)
        return JobHandle(job_id=payload["id"])

    def poll_status(self, job_id: str) -> JobStatus:
        payload = self._request("GET", f"/tasks/{job_id}")
        state = self._STATES.get(payload.get("status"), JobState.RUNNING)
        if state == JobState.SUCCEEDED:
            url = _first_output(payload.get("output"))
            if not url:
                return JobStatus(state=JobState.FAILED, failure_reason="No output URL returned from Runway")
            return JobStatus(state=state, output=AssetRef(url=url))
        if state == JobState.FAILED:
            return JobStatus(state=state, failure_reason=payload.get("failure") or "Unknown error")
        return JobStatus(state=state)


@dataclass
class ProviderSet:
    """Configured provider clients; a missing credential leaves a slot empty."""
    image: Optional[ProviderClient] = None
    video: Optional[ProviderClient] = None

    @classmethod
    def from_config(cls, config: AppConfig) -> "ProviderSet":
        retry_config = RetryConfig(max_attempts=config.http_retry_attempts)
        image = video = None
        if config.replicate_api_key:
            image = ReplicateClient(
                config.replicate_api_key,
                base_url=config.replicate_base_url,
                timeout=config.provider_timeout,
                retry_config=retry_config,
            )
        if config.runway_api_secret:
            video = RunwayClient(
                config.runway_api_secret,
                base_url=config.runway_base_url,
                api_version=config.runway_api_version,
                timeout=config.provider_timeout,
                retry_config=retry_config,
            )
        logger.info(
            f"Provider clients configured: image={image.name if image else None} "
            f"video={video.name if video else None}"
        )
        return cls(image=image, video=video)

    def require_image(self) -> ProviderClient:
        if self.image is None:
            raise ConfigurationError(
                "Image provider is not configured; set REPLICATE_API_KEY",
                config_key="REPLICATE_API_KEY",
            )
        return self.image

    def require_video(self) -> ProviderClient:
        if self.video is None:
            raise ConfigurationError(
                "Video provider is not configured; set RUNWAYML_API_SECRET",
                config_key="RUNWAYML_API_SECRET",
            )
        return self.video

    def close(self) -> None:
        for client in (self.image, self.video):
            if client is not None:
                client.close()
