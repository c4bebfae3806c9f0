"""Rule generation oracle: the external generative model behind a fixed contract.

An oracle receives a ``{"transactions": [...], "type": "..."}`` request and
returns the parsed JSON it produced. It neither retries nor validates the
rules; that is the adapter's job.
"""

import json
from abc import ABC, abstractmethod

import openai
import structlog
from openai import AsyncOpenAI

from fleetfin.config import settings
from fleetfin.core.exceptions import (
    AppError,
    InvalidOracleResponseError,
    RateLimitedError,
    TransientInfraError,
    UpstreamTimeoutError,
)
from fleetfin.services.rule_prompts import SYSTEM_PROMPT, build_rule_prompt

logger = structlog.get_logger()


class RuleOracle(ABC):
    """Abstract base for rule generators."""

    @abstractmethod
    async def generate(self, request: dict) -> dict:
        """Return the raw JSON answer for a generation request.

        Transient failures must surface as ``TransientInfraError`` subclasses
        so the caller can retry them.
        """


class OpenAIRuleOracle(RuleOracle):
    """OpenAI chat completions in JSON mode."""

    def __init__(self, api_key: str | None = None, model: str | None = None) -> None:
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.openai_model
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.api_key:
                raise AppError(
                    "OPENAI_API_KEY is not configured. Set it in your .env file to enable rule generation.",
                    error_code="ORACLE_NOT_CONFIGURED",
                )
            # Retries and timeouts are handled by the adapter
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0)
        return self._client

    async def generate(self, request: dict) -> dict:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_rule_prompt(request)},
                ],
                temperature=0.2,
                response_format={"type": "json_object"},
            )
        except openai.APITimeoutError as e:
            raise UpstreamTimeoutError("Rule generation timeout") from e
        except openai.APIConnectionError as e:
            raise TransientInfraError("Rule generation network error") from e
        except openai.RateLimitError as e:
            raise RateLimitedError("Rule generation rate limited by the model provider") from e
        except openai.APIStatusError as e:
            logger.error("oracle_request_failed", status=e.status_code, model=self.model)
            raise AppError(
                f"Rule generation failed with upstream status {e.status_code}",
                error_code="ORACLE_ERROR",
            ) from e

        raw = response.choices[0].message.content or "{}"
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("oracle_invalid_json", response=raw[:200])
            raise InvalidOracleResponseError("Rule generation returned malformed JSON") from e

        logger.info(
            "oracle_responded",
            model=self.model,
            transactions=len(request["transactions"]),
        )
        return parsed
