"""Extraction capability: document plus schema in, validated object out."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, Protocol, Type, TypeVar

import openai
import orjson
import structlog
from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from discovery.config import ExtractionSettings
from discovery.errors import ExtractionError
from discovery.observability.tracing import span

LOGGER = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


@dataclass
class Extraction(Generic[T]):
    value: T
    usage: Dict[str, Any] = field(default_factory=dict)


class Extractor(Protocol):
    async def extract(
        self,
        document: str,
        schema: Type[T],
        instructions: str,
        *,
        fast: bool = False,
    ) -> Extraction[T]: ...


def _system_prompt(schema: Type[BaseModel]) -> str:
    schema_json = orjson.dumps(schema.model_json_schema(), option=orjson.OPT_INDENT_2).decode()
    return (
        "You are a data extraction assistant. Use only information stated in the provided text; "
        "do not infer or guess.\n"
        f"Reply with a single JSON object that validates against this JSON schema:\n{schema_json}"
    )


class OpenAIExtractor:
    """Chat-completions extractor in JSON mode, validated with pydantic."""

    def __init__(self, settings: ExtractionSettings, client: Optional[AsyncOpenAI] = None) -> None:
        self._settings = settings
        self._client = client or AsyncOpenAI()

    async def extract(
        self,
        document: str,
        schema: Type[T],
        instructions: str,
        *,
        fast: bool = False,
    ) -> Extraction[T]:
        model = self._settings.fast_model if fast else self._settings.model
        messages = [
            {"role": "system", "content": _system_prompt(schema)},
            {"role": "user", "content": f"{instructions}\n\nDocument:\n---\n{document}"},
        ]
        try:
            with span(name=f"extract:{schema.__name__}"):
                response = await self._client.chat.completions.create(
                    model=model,
                    messages=messages,
                    response_format={"type": "json_object"},
                    temperature=self._settings.temperature,
                )
        except openai.OpenAIError as exc:
            raise ExtractionError(
                f"Extraction request for {schema.__name__} failed",
                meta={"model": model, "reason": str(exc)},
            ) from exc

        content = response.choices[0].message.content or ""
        try:
            value = schema.model_validate_json(content)
        except ValidationError as exc:
            LOGGER.warning("extraction_invalid", schema=schema.__name__, model=model, error_count=exc.error_count())
            raise ExtractionError(
                f"Model reply did not match {schema.__name__}",
                meta={"model": model, "errors": exc.errors(include_url=False, include_context=False)},
            ) from exc

        usage: Dict[str, Any] = {"model": model, "schema": schema.__name__}
        if response.usage:
            usage.update(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return Extraction(value=value, usage=usage)
