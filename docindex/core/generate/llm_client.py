import logging
import re
from typing import Any, Dict, List, Optional, Type, TypeVar
import httpx
from pydantic import BaseModel, ValidationError
from docindex.config.settings import LLMConfig, settings
from docindex.core.errors import LLMError
from docindex.core.retry import retry_async

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_SYSTEM_PROMPT = "Follow the user's instructions and extract the required information from the user's prompt."
# Control characters other than tab/newline break some providers' JSON parsing
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def to_image_url(image: str) -> str:
    """Accepts a data URL or bare base64; bare PNG base64 starts with iVBORw0KGgo."""
    if image.startswith("data:image"):
        return image
    if image.startswith("iVBORw0KGgo"):
        return f"data:image/png;base64,{image}"
    return f"data:image/jpeg;base64,{image}"


class LLMClient:
    """
    OpenRouter (OpenAI-compatible) chat-completions client for structured output.
    Supports image inputs, retries and model fallback.
    """

    def __init__(self,
                 config: Optional[LLMConfig] = None,
                 api_key: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or settings.llm
        self.api_key = api_key if api_key is not None else settings.openrouter_api_key
        self.base_url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        self.headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "X-Title": "docindex",
            "Content-Type": "application/json"
        }
        self.transport = transport

        if not self.api_key:
            logger.warning("OPENROUTER_API_KEY is not set. LLM calls will fail.")

    def build_messages(self, system_prompt: str, prompt: str, images: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        messages: List[Dict[str, Any]] = [
            {"role": "system", "content": CONTROL_CHARS.sub("", system_prompt or DEFAULT_SYSTEM_PROMPT)},
            {"role": "user", "content": CONTROL_CHARS.sub("", prompt)},
        ]
        if images:
            messages.append({
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": to_image_url(image), "detail": "auto"}}
                    for image in images
                ],
            })
        return messages

    def build_payload(self, model: str, messages: List[Dict[str, Any]], schema: Type[T]) -> Dict[str, Any]:
        return {
            "model": model,
            "messages": messages,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "output",
                    "strict": True,
                    "schema": schema.model_json_schema(),
                },
            },
        }

    async def generate_structured(self,
                                  system_prompt: str,
                                  prompt: str,
                                  schema: Type[T],
                                  images: Optional[List[str]] = None) -> T:
        """
        Calls the chat-completions API and validates the reply against `schema`.
        Tries the fallback model once the primary model has used up its retries.
        """
        messages = self.build_messages(system_prompt, prompt, images)
        models = [self.config.model]
        if self.config.fallback_model and self.config.fallback_model != self.config.model:
            models.append(self.config.fallback_model)

        last_error: Optional[Exception] = None
        for model in models:
            payload = self.build_payload(model, messages, schema)
            try:
                result = await retry_async(
                    lambda: self._call_api(payload, schema),
                    tag=f"generate-json {model}",
                    max_retries=self.config.max_retries,
                    base_delay=self.config.base_delay,
                )
                logger.info(f"generate_structured: {prompt[:50]!r} via {model}")
                return result
            except Exception as e:
                logger.warning(f"Model {model} failed: {e}")
                last_error = e

        raise LLMError(f"Structured generation failed: {last_error}") from last_error

    async def _call_api(self, payload: Dict[str, Any], schema: Type[T]) -> T:
        async with httpx.AsyncClient(timeout=self.config.timeout, transport=self.transport) as client:
            response = await client.post(self.base_url, headers=self.headers, json=payload)
            response.raise_for_status()
            data = response.json()

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed completion response: {data}") from e

        try:
            return schema.model_validate_json(content)
        except ValidationError as e:
            raise LLMError(f"Response does not match {schema.__name__}: {e.error_count()} errors") from e
