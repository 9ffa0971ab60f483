import asyncio
import logging
import time
from typing import Optional
import httpx
from docindex.config.settings import ExtractionConfig, settings
from docindex.core.errors import ExtractionError
from docindex.core.retry import retry_async
from docindex.core.parse.base import LayoutExtractor
from docindex.core.parse.local_extractor import LocalLayoutExtractor
from docindex.models.layout import AnalyzeResult

logger = logging.getLogger(__name__)


class DocumentIntelligenceClient(LayoutExtractor):
    """
    Azure Document Intelligence layout analysis over REST.
    Submits the file, polls the Operation-Location until the analysis settles,
    and keeps the result id so figures can be fetched while the result is retained.
    """

    def __init__(self,
                 config: Optional[ExtractionConfig] = None,
                 api_key: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or settings.extraction
        self.api_key = api_key if api_key is not None else settings.document_intelligence_key
        self.base_url = f"{self.config.endpoint.rstrip('/')}/documentintelligence"
        self.headers = {"Ocp-Apim-Subscription-Key": self.api_key}
        self.transport = transport

        if not self.config.endpoint or not self.api_key:
            logger.warning("Document Intelligence configuration is incomplete")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=60.0, transport=self.transport)

    async def extract(self, data: bytes, file_name: str) -> AnalyzeResult:
        logger.info(f"Analysing {file_name}: {round(len(data) / 1024)} KB")
        url = f"{self.base_url}/documentModels/{self.config.model_id}:analyze"
        params = {"api-version": self.config.api_version, "output": "figures"}

        async with self._client() as client:
            async def submit() -> httpx.Response:
                response = await client.post(
                    url,
                    params=params,
                    headers={**self.headers, "Content-Type": "application/octet-stream"},
                    content=data,
                )
                response.raise_for_status()
                return response

            try:
                response = await retry_async(submit, tag="analyze-document")
            except httpx.HTTPError as e:
                raise ExtractionError(f"Analysis request failed for {file_name}: {e}") from e

            operation_location = response.headers.get("operation-location")
            if not operation_location:
                raise ExtractionError("No Operation-Location in the analyze response")
            result_id = operation_location.split("/")[-1].split("?")[0]

            body = await self._poll(client, operation_location)

        analyze_result = body.get("analyzeResult")
        if not analyze_result:
            raise ExtractionError("No analyzeResult found in the response")

        result = AnalyzeResult.model_validate(analyze_result)
        result.result_id = result_id
        logger.info(
            f"Analysis done: {len(result.pages)} pages, {len(result.paragraphs)} paragraphs, "
            f"{len(result.tables)} tables, {len(result.figures)} figures"
        )
        return result

    async def _poll(self, client: httpx.AsyncClient, operation_location: str) -> dict:
        deadline = time.monotonic() + self.config.timeout
        while True:
            response = await client.get(operation_location, headers=self.headers)
            response.raise_for_status()
            body = response.json()
            status = body.get("status")

            if status == "succeeded":
                return body
            if status in ("failed", "canceled"):
                raise ExtractionError(f"Analysis {status}: {body.get('error')}")
            if time.monotonic() > deadline:
                raise ExtractionError(f"Analysis did not finish within {self.config.timeout}s")

            retry_after = response.headers.get("retry-after")
            await asyncio.sleep(float(retry_after) if retry_after else self.config.poll_interval)

    async def download_figure(self, result: AnalyzeResult, figure_id: str) -> Optional[bytes]:
        url = (
            f"{self.base_url}/documentModels/{self.config.model_id}"
            f"/analyzeResults/{result.result_id}/figures/{figure_id}"
        )
        try:
            async with self._client() as client:
                response = await client.get(url, params={"api-version": self.config.api_version}, headers=self.headers)
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            logger.error(f"Error downloading figure {figure_id}: {e}")
            return None


def build_extractor(config: Optional[ExtractionConfig] = None) -> LayoutExtractor:
    config = config or settings.extraction
    if config.provider == "azure":
        return DocumentIntelligenceClient(config)

    return LocalLayoutExtractor(config)
