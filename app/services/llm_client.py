"""Thin Bedrock client wrapper for single-shot text generation."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Optional

from app.config.settings import BedrockConfig, settings
from app.pipelines.minutes.errors import PermanentExternalError
from app.pipelines.minutes.interfaces import TextGenerationInterface
from app.services.aws import call_aws, create_boto3_client

logger = logging.getLogger(__name__)


def _decode_bedrock_api_key(secret_value: Optional[str]) -> tuple[str, str] | None:
    """Decode the BEDROCK_API_KEY secret into access/secret key components."""

    if not secret_value:
        return None

    try:
        decoded_bytes = base64.b64decode(secret_value.strip())
    except (binascii.Error, ValueError):
        decoded_bytes = secret_value.encode("utf-8", "ignore")

    filtered = "".join(chr(b) for b in decoded_bytes if 31 < b < 127)
    if ":" not in filtered:
        return None
    access_key, secret_key = filtered.split(":", 1)
    return access_key, secret_key


class BedrockLlmClient(TextGenerationInterface):
    """Invoke Amazon Bedrock models through the ``converse`` API."""

    def __init__(self, config: BedrockConfig | None = None, *, client: Any = None) -> None:
        self._config = config or settings.bedrock
        self._model_id = self._config.model_id

        if client is not None:
            self._client = client
            return

        api_key_tuple = None
        if self._config.api_key:
            api_key_tuple = _decode_bedrock_api_key(self._config.api_key.get_secret_value())

        self._client = create_boto3_client(
            "bedrock-runtime",
            region_name=self._config.region,
            aws_access_key_id=api_key_tuple[0] if api_key_tuple else None,
            aws_secret_access_key=api_key_tuple[1] if api_key_tuple else None,
        )

    async def invoke(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        model_id: str | None = None,
    ) -> str:
        """Run a Bedrock `converse` call and return the aggregate text output."""

        target_model_id = model_id or self._model_id
        if not target_model_id:
            raise PermanentExternalError("Bedrock model id is not configured.")

        inference_cfg = {
            "maxTokens": max_tokens or self._config.max_tokens,
            "temperature": (
                temperature
                if temperature is not None
                else self._config.temperature
            ),
            "topP": top_p if top_p is not None else self._config.top_p,
        }

        response = await call_aws(
            "bedrock.converse",
            self._client.converse,
            modelId=target_model_id,
            system=[{"text": system_prompt}],
            messages=[{"role": "user", "content": [{"text": user_prompt}]}],
            inferenceConfig=inference_cfg,
        )
        content_blocks = (
            response.get("output", {})
            .get("message", {})
            .get("content", [])
        )
        texts = [block.get("text", "") for block in content_blocks if block.get("text")]
        if response.get("stopReason") == "max_tokens":
            logger.warning("Bedrock output truncated at maxTokens=%s", inference_cfg["maxTokens"])
        return "\n".join(texts).strip()


__all__ = ["BedrockLlmClient"]
