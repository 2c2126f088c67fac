"""Generation backend client.

Async client for the job backend's REST surface:

    GET  /health
    POST /sessions                              → {session_id}
    POST /tasks/chords_to_midis       (JSON)    → {task_id, status_url}
    POST /tasks/ref_midi_to_midi      (form)    → {task_id, ...}
    POST /tasks/ref_midis_mix_set     (form)    → {task_id, ...}
    GET  /tasks/{task_id}                       → TaskStatusResponse
    GET  /tasks/artifacts/content/{artifact_id} → MIDI bytes

Every non-2xx answer raises :class:`~bargen.errors.ApiError` carrying
``"HTTP <status> <reason>: <payload>"``; a request that never got an answer
raises :class:`~bargen.errors.ApiTransportError`.  The client does not retry:
the poll loop owns retry policy for status checks, and submits are not
idempotent.
"""
from __future__ import annotations

import json
import logging

import httpx

from bargen.config import settings
from bargen.contracts.json_types import (
    ChordsToMidisRequest,
    CreateSessionResponse,
    RefMidisMixSetRequest,
    RefMidiToMidiRequest,
    TaskStatusResponse,
    TaskSubmitResponse,
)
from bargen.errors import ApiError, ApiTransportError

logger = logging.getLogger(__name__)

_CONNECTION_LIMITS = httpx.Limits(
    max_connections=20,
    max_keepalive_connections=10,
    keepalive_expiry=30.0,
)

_MIDI_CONTENT_TYPE = "audio/midi"


def join_url(base: str, path: str) -> str:
    """Join *base* and *path* with exactly one slash between them."""
    b = base if base.endswith("/") else base + "/"
    p = path[1:] if path.startswith("/") else path
    return b + p


def _read_error_payload(response: httpx.Response) -> str:
    content_type = response.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            return json.dumps(response.json(), ensure_ascii=False)
        return response.text
    except ValueError:
        return ""


def _raise_for_error(response: httpx.Response) -> None:
    if response.is_success:
        return
    payload = _read_error_payload(response)
    raise ApiError(
        f"HTTP {response.status_code} {response.reason_phrase}: {payload}",
        status_code=response.status_code,
    )


def _json_body(response: httpx.Response) -> dict[str, object]:
    _raise_for_error(response)
    try:
        data = response.json()
    except ValueError as exc:
        raise ApiError(f"Invalid JSON from backend: {response.text[:200]}") from exc
    if not isinstance(data, dict):
        raise ApiError(f"Unexpected response shape: {response.text[:200]}")
    return data


def _require_task_id(data: dict[str, object]) -> TaskSubmitResponse:
    task_id = data.get("task_id")
    if not isinstance(task_id, str) or not task_id:
        raise ApiError(f"No task_id in submit response: {data}")
    out: TaskSubmitResponse = {"task_id": task_id}
    status_url = data.get("status_url")
    if isinstance(status_url, str):
        out["status_url"] = status_url
    return out


def _chords_form_fields(req: RefMidiToMidiRequest | RefMidisMixSetRequest) -> dict[str, str]:
    fields = {
        "session_id": req["session_id"],
        "chords": json.dumps(req["chords"], ensure_ascii=False),
        "segmentation": req["segmentation"],
        "bpm": str(req["bpm"]),
    }
    chord_beats = req.get("chord_beats")
    if chord_beats:
        fields["chord_beats"] = json.dumps(chord_beats)
    return fields


class ApiClient:
    """
    Async client for the generation backend.

    Uses a long-lived httpx.AsyncClient with keepalive connection pooling,
    created lazily on first use.  Call ``close()`` on teardown.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.api_base_url
        self.timeout = timeout or settings.api_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    connect=5.0,
                    read=float(self.timeout),
                    write=30.0,
                    pool=5.0,
                ),
                limits=_CONNECTION_LIMITS,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def url(self, path: str) -> str:
        return join_url(self.base_url, path)

    async def _get(self, path: str) -> httpx.Response:
        try:
            return await self.client.get(self.url(path))
        except httpx.RequestError as exc:
            raise ApiTransportError(f"GET {path} failed: {exc}") from exc

    async def _post(self, path: str, **kwargs: object) -> httpx.Response:
        try:
            return await self.client.post(self.url(path), **kwargs)  # type: ignore[arg-type]
        except httpx.RequestError as exc:
            raise ApiTransportError(f"POST {path} failed: {exc}") from exc

    # ── Endpoints ────────────────────────────────────────────────────────

    async def health(self) -> object:
        response = await self._get("/health")
        _raise_for_error(response)
        return response.json()

    async def create_session(self) -> CreateSessionResponse:
        data = await self._post_json("/sessions")
        session_id = data.get("session_id")
        if not isinstance(session_id, str) or not session_id:
            raise ApiError(f"No session_id in create-session response: {data}")
        return {"session_id": session_id}

    async def _post_json(self, path: str, body: object | None = None) -> dict[str, object]:
        if body is None:
            response = await self._post(path)
        else:
            response = await self._post(path, json=body)
        return _json_body(response)

    async def submit_chords_to_midis(self, req: ChordsToMidisRequest) -> TaskSubmitResponse:
        logger.info(
            f"📤 Submitting chords_to_midis: {len(req['chords'])} chord(s), "
            f"segmentation={req['segmentation']}, inst={req.get('inst')}"
        )
        return _require_task_id(await self._post_json("/tasks/chords_to_midis", dict(req)))

    async def submit_ref_midi_to_midi(self, req: RefMidiToMidiRequest) -> TaskSubmitResponse:
        fields = _chords_form_fields(req)
        inst = req.get("inst")
        if inst:
            fields["inst"] = inst
        filename = req.get("ref_filename") or "ref.mid"
        files = {"ref_midi": (filename, req["ref_midi"], _MIDI_CONTENT_TYPE)}
        logger.info(
            f"📤 Submitting ref_midi_to_midi: {filename} ({len(req['ref_midi'])} bytes), "
            f"segmentation={req['segmentation']}"
        )
        response = await self._post("/tasks/ref_midi_to_midi", data=fields, files=files)
        return _require_task_id(_json_body(response))

    async def submit_ref_midis_mix_set(self, req: RefMidisMixSetRequest) -> TaskSubmitResponse:
        fields = _chords_form_fields(req)
        fields["alphas"] = json.dumps(list(req.get("alphas", [])))
        files = {
            "midi_a": ("midi_a.mid", req["midi_a"], _MIDI_CONTENT_TYPE),
            "midi_b": ("midi_b.mid", req["midi_b"], _MIDI_CONTENT_TYPE),
        }
        logger.info(
            f"📤 Submitting ref_midis_mix_set: alphas={fields['alphas']}, "
            f"segmentation={req['segmentation']}"
        )
        response = await self._post("/tasks/ref_midis_mix_set", data=fields, files=files)
        return _require_task_id(_json_body(response))

    async def get_task(self, task_id: str) -> TaskStatusResponse:
        data = _json_body(await self._get(f"/tasks/{task_id}"))
        return data  # type: ignore[return-value]

    async def download_artifact(self, artifact_id: str) -> bytes:
        return await self.download_artifact_by_url(f"/tasks/artifacts/content/{artifact_id}")

    async def download_artifact_by_url(self, relative_url: str) -> bytes:
        """Download from an artifact's relative ``url`` field."""
        response = await self._get(relative_url)
        _raise_for_error(response)
        logger.debug(f"📥 Downloaded {len(response.content)} bytes from {relative_url}")
        return response.content


# ---------------------------------------------------------------------------
# Module-level singleton — shared so the connection pool is reused.
# ---------------------------------------------------------------------------

_shared_client: ApiClient | None = None


def get_api_client() -> ApiClient:
    """Return the process-wide ApiClient singleton."""
    global _shared_client
    if _shared_client is None:
        _shared_client = ApiClient()
    return _shared_client


async def close_api_client() -> None:
    """Close the singleton client (call on shutdown)."""
    global _shared_client
    if _shared_client is not None:
        await _shared_client.close()
        _shared_client = None
