"""Streaming client for an Ollama-compatible inference backend."""

import json
import logging
from typing import Any, Dict, Iterator, List, Optional

import httpx
from pydantic import BaseModel
from tenacity import Retrying, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings
from app.pipeline.errors import UpstreamError
from app.schemas.job import JobRecord
from app.services.model_catalog import get_model

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = (429, 500, 503)


class InferenceRequest(BaseModel):
    """What the backend needs to generate output for a job."""

    model: str
    prompt: str
    system: Optional[str] = None
    options: Dict[str, Any] = {}


class InferenceChunk(BaseModel):
    """One streamed event from the backend."""

    response: str = ""
    done: bool = False
    eval_count: Optional[int] = None


def build_request(job: JobRecord) -> InferenceRequest:
    """
    Translate a job into a backend request.

    Raises:
        ValueError: If the job's model is not supported
    """
    model = get_model(job.model_id)
    if model is None:
        raise ValueError(f"Unknown model: {job.model_id}")

    options = {
        "num_predict": job.parameters.max_tokens,
        "temperature": job.parameters.temperature,
        "top_p": job.parameters.top_p,
    }
    if job.parameters.seed is not None:
        options["seed"] = job.parameters.seed

    return InferenceRequest(
        model=model.backend_name,
        prompt=job.prompt,
        system=job.system_prompt,
        options=options,
    )


class InferenceClient:
    """Opaque token source: yields chunks until one arrives with ``done``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the client."""
        self.base_url = (base_url or settings.OLLAMA_URL).rstrip("/")
        self.timeout = timeout or settings.INFERENCE_TIMEOUT
        self.max_retries = max_retries or settings.INFERENCE_MAX_RETRIES
        self.transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.Client:
        return httpx.Client(timeout=timeout or self.timeout, transport=self.transport)

    def check_health(self) -> bool:
        """True if the backend answers its model listing endpoint."""
        try:
            with self._client(timeout=5.0) as client:
                response = client.get(f"{self.base_url}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Inference backend health check failed: {e}")
            return False

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def list_models(self) -> List[str]:
        """Names of the models the backend has pulled."""
        with self._client() as client:
            response = client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            return [m.get("name", "") for m in response.json().get("models", [])]

    def _open_stream(self, client: httpx.Client, payload: Dict[str, Any]) -> httpx.Response:
        request = client.build_request("POST", f"{self.base_url}/api/generate", json=payload)
        response = client.send(request, stream=True)

        if response.status_code in RETRYABLE_STATUS:
            response.close()
            logger.warning(f"Retryable error {response.status_code} from inference backend")
            raise httpx.HTTPStatusError(
                f"Retryable error: {response.status_code}",
                request=request,
                response=response,
            )
        return response

    def stream_generate(self, request: InferenceRequest) -> Iterator[InferenceChunk]:
        """
        Stream generation chunks for ``request``.

        Connection setup is retried; once tokens flow, any failure is final.
        Closing the iterator early releases the connection.

        Raises:
            UpstreamError: On HTTP errors, transport failures or an error event
        """
        payload = request.model_dump(exclude_none=True)
        payload["stream"] = True
        logger.info(f"Inference request to {request.model} ({len(request.prompt)} chars)")

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            retry=retry_if_exception_type((httpx.TransportError, httpx.HTTPStatusError)),
            reraise=True,
        )

        with self._client() as client:
            try:
                response = retrying(self._open_stream, client, payload)
            except httpx.HTTPStatusError as e:
                raise UpstreamError(f"Inference backend error: {e.response.status_code}", e.response.status_code)
            except httpx.TransportError as e:
                raise UpstreamError(f"Inference backend unreachable: {e}")

            try:
                if response.status_code >= 400:
                    response.read()
                    raise UpstreamError(
                        f"Inference backend error {response.status_code}: {response.text[:200]}",
                        response.status_code,
                    )

                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping malformed inference line: {line[:100]}")
                        continue

                    if data.get("error"):
                        raise UpstreamError(str(data["error"]))

                    chunk = InferenceChunk(
                        response=data.get("response", ""),
                        done=bool(data.get("done", False)),
                        eval_count=data.get("eval_count"),
                    )
                    yield chunk
                    if chunk.done:
                        return
            except httpx.HTTPError as e:
                raise UpstreamError(f"Inference stream interrupted: {e}")
            finally:
                response.close()

        raise UpstreamError("Inference stream ended without a done event")
