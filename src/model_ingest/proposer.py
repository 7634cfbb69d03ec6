from __future__ import annotations
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from . import schema
from .config import IngestConfig
from .errors import ProposerAuthError, ProposerError, ProposerTransientError
from .filename import InferredContext
from .mapping import Mapping
from .transforms import prompt_transform_names


logger = logging.getLogger(__name__)

OVERLOADED_STATUS = 529
OVERLOADED_TYPE = "overloaded_error"


def build_system_prompt() -> str:
    transforms = ", ".join(prompt_transform_names())
    return (
        "You are a data ingestion assistant. You will map CSV columns to a fixed database schema (models, models_media).\n"
        "Rules:\n"
        "- Import as many fields as possible; leave unmapped as null.\n"
        "- Numeric fields must respect units in descriptions (convert if needed). Height is in centimeters.\n"
        "- Enumerated fields must match one of the predefined values exactly after normalization.\n"
        "- 'data_source' must be the CSV filename.\n"
        "- 'gender' is inferred from the filename and overrides any CSV value.\n"
        "- 'model_board_category' may be inferred from the filename; omit if none.\n"
        "- Location mapping rules: prefer Instagram location; if a column is clearly an agency location "
        "(e.g., agency name with city/country), do not map it; use Models.com (MDC) location only when no other "
        "location column exists; never use agency locations as a proxy for model location.\n"
        "- Chest vs waist sanity: double-check measurement semantics; if a column labeled waist clearly contains "
        "chest/bust values, map it to chest_bust instead; likewise, if a chest/bust column clearly looks like waist, "
        "map it to waist.\n"
        "- Never invent data. Never execute code. Only propose a mapping using known transforms.\n"
        f"- Use only transforms from this list: {transforms}.\n"
        "- If user provides a previousMapping and reviewFeedback, revise the mapping accordingly and correct the "
        "specific issues noted. Prefer minimally invasive changes that satisfy the feedback while adhering to all rules.\n"
        "Output format:\n"
        "- Return a single valid JSON object ONLY. No markdown, no code fences, no commentary.\n"
        "- Keys: targetTables (array with values from ['models','models_media']), fieldMappings (object), "
        "mediaMappings (object, optional), notes (string, optional).\n"
        "- Keys in fieldMappings/mediaMappings must be of the form 'models.<column>' or 'models_media.<column>'. "
        "Values are objects with optional keys { from, transform, default }.\n"
        "- The 'from' key may be a string or an array of strings; if an array is provided, try each source column "
        "in order and use the first non-empty value.\n"
        "- Do NOT include 'data_source' in any mapping. It is set by the system on the 'models' table only.\n"
        "- For 'models_media', the only mappable field is 'link'. Do not include 'id' or 'model_id' as they are "
        "system-handled."
    )


def build_user_payload(
    headers: List[str],
    sample_rows: List[dict],
    context: InferredContext,
    previous_mapping: Optional[Mapping] = None,
    feedback: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "headers": list(headers),
        "sampleRows": list(sample_rows),
        "provided": {
            "gender": context.gender,
            "model_board_category": context.board_category,
            "data_source": context.source_id,
        },
        "modelsFields": schema.fields_for_prompt(schema.MODELS_TABLE),
        "modelsMediaFields": schema.fields_for_prompt(schema.MEDIA_TABLE),
        "previousMapping": previous_mapping.to_document() if previous_mapping is not None else None,
        "reviewFeedback": (feedback or "").strip() or None,
    }


def _error_type(resp: requests.Response) -> Optional[str]:
    try:
        body = resp.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    err = body.get("error")
    if isinstance(err, dict):
        return err.get("type")
    return body.get("type")


class MappingProposer:
    """Asks the language model for a column mapping and returns its raw text."""

    def __init__(
        self,
        config: IngestConfig,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.sleep = sleep

    def _key_info(self) -> Dict[str, Any]:
        key = self.config.anthropic_api_key
        return {"length": len(key), "startsWithSkAnt": key.startswith("sk-ant-")}

    def _post(self, body: Dict[str, Any]) -> requests.Response:
        url = self.config.anthropic_base_url.rstrip("/") + "/v1/messages"
        headers = {
            "x-api-key": self.config.anthropic_api_key,
            "anthropic-version": self.config.anthropic_version,
            "content-type": "application/json",
        }
        try:
            return self.session.post(url, data=json.dumps(body), headers=headers, timeout=self.config.proposer_timeout)
        except requests.RequestException as e:
            raise ProposerError(f"Upstream error calling Anthropic: {e}", self._key_info())

    def _send(self, body: Dict[str, Any]) -> Dict[str, Any]:
        delays = list(self.config.proposer_retry_delays)
        attempt = 0
        while True:
            resp = self._post(body)
            status = resp.status_code
            err_type = _error_type(resp) if status >= 400 else None
            overloaded = status == OVERLOADED_STATUS or err_type == OVERLOADED_TYPE
            if overloaded and attempt < len(delays):
                logger.warning(f"Proposer overloaded (status {status}); retrying in {delays[attempt]}s")
                self.sleep(delays[attempt])
                attempt += 1
                continue
            if status == 401:
                raise ProposerAuthError(
                    "Anthropic authentication failed (401). Check ANTHROPIC_API_KEY value and account access.",
                    self._key_info(),
                    status,
                )
            if overloaded:
                raise ProposerTransientError(
                    "Anthropic is temporarily overloaded (529). Please retry in a few seconds.",
                    {**self._key_info(), "status": status, "errorType": err_type},
                    status,
                )
            if status >= 400:
                raise ProposerError(
                    f"Upstream error calling Anthropic (HTTP {status})",
                    {**self._key_info(), "status": status, "errorType": err_type},
                    status,
                )
            try:
                return resp.json()
            except ValueError:
                raise ProposerError("Invalid response from Claude", {"status": status}, status)

    def complete(self, system: str, payload: Dict[str, Any], max_tokens: Optional[int] = None) -> str:
        """One Messages API round trip; returns the first text block."""
        self.config.require_proposer()
        body = {
            "model": self.config.anthropic_model,
            "max_tokens": max_tokens or self.config.proposer_max_tokens,
            "temperature": 0,
            "system": system,
            "messages": [
                {"role": "user", "content": [{"type": "text", "text": json.dumps(payload, default=str)}]},
            ],
        }
        data = self._send(body)
        content = (data.get("content") or [None])[0] if isinstance(data, dict) else None
        if not isinstance(content, dict) or content.get("type") != "text":
            raise ProposerError("Invalid response from Claude")
        return content.get("text") or ""

    def propose(
        self,
        headers: List[str],
        sample_rows: List[dict],
        context: InferredContext,
        previous_mapping: Optional[Mapping] = None,
        feedback: Optional[str] = None,
    ) -> str:
        payload = build_user_payload(headers, sample_rows, context, previous_mapping, feedback)
        logger.info(f"Requesting mapping for {context.source_id} ({len(headers)} headers, {len(sample_rows)} rows)")
        return self.complete(build_system_prompt(), payload)
