"""
Gemini integration for structured text analysis.

Wraps the Google Generative AI SDK behind a single JSON-completion call. The
client is created lazily on first use so importing the pipeline never requires
credentials.
"""

import json
import logging
import os
from functools import lru_cache
from typing import Optional, Type, TypeVar

from google import genai
from google.genai import types
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MODEL = os.environ.get("EVIDENCE_MODEL", "gemini-2.5-flash")
DEFAULT_TEMPERATURE = 0.2
DEFAULT_MAX_OUTPUT_TOKENS = 2000

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@lru_cache(maxsize=1)
def get_client() -> genai.Client:
    """
    Build the Generative AI client once and cache it.

    Uses Vertex AI when ``GOOGLE_GENAI_USE_VERTEXAI`` is true, otherwise an API
    key, falling back to Vertex AI when only a project is configured.

    Raises:
        ValueError: If neither an API key nor a Google Cloud project is configured
    """
    use_vertexai = os.environ.get("GOOGLE_GENAI_USE_VERTEXAI", "").lower() == "true"
    project_id = os.environ.get("GOOGLE_CLOUD_PROJECT")
    location = os.environ.get("GOOGLE_CLOUD_LOCATION", "us-central1")
    api_key = os.environ.get("GOOGLE_API_KEY")

    if use_vertexai or not api_key:
        if not project_id:
            raise ValueError(
                "Neither GOOGLE_API_KEY nor GOOGLE_CLOUD_PROJECT found. Cannot initialize client."
            )
        logger.info(f"Configuring Google Generative AI with Vertex AI in {location}")
        return genai.Client(
            vertexai=True,
            project=project_id,
            location=location,
            http_options=types.HttpOptions(api_version="v1"),
        )

    logger.info("Configuring Google Generative AI with API Key")
    return genai.Client(api_key=api_key, http_options=types.HttpOptions(api_version="v1"))


async def generate_json(
    system_prompt: str,
    user_prompt: str,
    schema: Type[SchemaT],
    model: Optional[str] = None,
    temperature: float = DEFAULT_TEMPERATURE,
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
) -> SchemaT:
    """
    Run a JSON-mode completion and validate it against ``schema``.

    Raises:
        GoogleAPIError: On transport or API failures
        ValueError: If the model returns no usable JSON
        ValidationError: If the JSON does not match ``schema``
    """
    model_name = model or DEFAULT_MODEL
    response = await get_client().aio.models.generate_content(
        model=model_name,
        contents=user_prompt,
        config=types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json",
            response_schema=schema,
        ),
    )

    parsed = getattr(response, "parsed", None)
    if isinstance(parsed, schema):
        return parsed

    raw_text = getattr(response, "text", None)
    logger.debug(f"Raw LLM text ({model_name}): {raw_text}")
    if not raw_text:
        raise ValueError("LLM returned an empty response")
    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise ValueError(f"LLM returned invalid JSON: {e}")
    return schema.model_validate(data)
