import base64
import json

import aiohttp
import pytest

from src.config import ProviderConfig
from src.errors import NetworkError, Stage, StageError
from src.languages import LanguageCode
from src.pipelines.bhashini import BhashiniClient
from src.pipelines.retry import RetryPolicy
from tests.fakes import SleepRecorder


INFER_URL = "https://dhruva.example/services/inference/pipeline/compute"

RESOLVE_OK = {
    "pipelineResponseConfig": [
        {"taskType": "translation", "config": [{"serviceId": "ai4bharat/indictrans-v2"}]}
    ],
    "pipelineInferenceAPIEndPoint": {
        "callbackUrl": INFER_URL,
        "inferenceApiKey": {"name": "Authorization", "value": "inference-token"},
    },
}


def _translation_body(target="चोरी हुई", confidence=None):
    output = {"source": "theft happened", "target": target}
    if confidence is not None:
        output["confidence"] = confidence
    return {"pipelineResponse": [{"taskType": "translation", "output": [output]}]}


class _FakeResponse:
    def __init__(self, status=200, body=None):
        self.status = status
        self._body = body if isinstance(body, str) else json.dumps(body or {})

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _FakeSession:
    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []
        self.closed = False

    def _next(self, method, url, json_body, headers):
        self.requests.append({"method": method, "url": url, "json": json_body, "headers": headers})
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def post(self, url, json=None, headers=None, timeout=None):
        return self._next("POST", url, json, headers)

    def head(self, url, headers=None, timeout=None):
        return self._next("HEAD", url, None, headers)

    async def close(self):
        self.closed = True


def _client(session, *, retry=None, clock=None, **overrides):
    config = ProviderConfig(
        base_url="https://dhruva.example/services/",
        api_key="ulca-key",
        user_id="user-1",
        **overrides,
    )
    kwargs = {"session_factory": lambda: session}
    if clock is not None:
        kwargs["clock"] = clock
    return BhashiniClient(config, retry, **kwargs)


@pytest.mark.asyncio
async def test_translate_resolves_service_then_calls_inference_endpoint():
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=_translation_body())])
    client = _client(session)

    result = await client.translate("theft happened", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert result.translation == "चोरी हुई"
    resolve, infer = session.requests
    assert resolve["url"] == "https://dhruva.example/services/inference/pipeline"
    assert resolve["headers"]["userID"] == "user-1"
    assert resolve["headers"]["ulcaApiKey"] == "ulca-key"
    assert resolve["json"]["pipelineTasks"][0]["config"]["language"] == {
        "sourceLanguage": "en",
        "targetLanguage": "hi",
    }
    assert infer["url"] == INFER_URL
    assert infer["headers"]["Authorization"] == "inference-token"
    task = infer["json"]["pipelineTasks"][0]
    assert task["taskType"] == "translation"
    assert task["config"]["serviceId"] == "ai4bharat/indictrans-v2"
    assert infer["json"]["inputData"] == {"input": [{"source": "theft happened"}]}


@pytest.mark.asyncio
async def test_missing_confidence_uses_default():
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=_translation_body())])
    client = _client(session)

    result = await client.translate("theft happened", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert result.confidence == 0.8


@pytest.mark.asyncio
@pytest.mark.parametrize("raw,expected", [(1.7, 1.0), (-0.2, 0.0), (0.42, 0.42), ("0.5", 0.5), ("n/a", 0.8)])
async def test_confidence_is_clamped_to_unit_interval(raw, expected):
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=_translation_body(confidence=raw))])
    client = _client(session)

    result = await client.translate("theft happened", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert result.confidence == pytest.approx(expected)


@pytest.mark.asyncio
async def test_resolved_service_is_cached_until_ttl_expires():
    now = [100.0]
    session = _FakeSession(
        [
            _FakeResponse(body=RESOLVE_OK),
            _FakeResponse(body=_translation_body()),
            _FakeResponse(body=_translation_body()),
            _FakeResponse(body=RESOLVE_OK),
            _FakeResponse(body=_translation_body()),
        ]
    )
    client = _client(session, clock=lambda: now[0], resolve_cache_ttl_sec=60)

    await client.translate("a", LanguageCode.ENGLISH, LanguageCode.HINDI)
    await client.translate("b", LanguageCode.ENGLISH, LanguageCode.HINDI)
    now[0] += 61
    await client.translate("c", LanguageCode.ENGLISH, LanguageCode.HINDI)

    urls = [r["url"] for r in session.requests]
    assert urls.count("https://dhruva.example/services/inference/pipeline") == 2
    assert urls.count(INFER_URL) == 3


@pytest.mark.asyncio
async def test_legacy_resolve_shape_with_nested_inference_key():
    legacy = {
        "pipelineResponseConfig": [
            {
                "config": [{"serviceId": "legacy-service"}],
                "inferenceApiKey": {"inferenceEndPoint": "https://legacy.example/infer", "value": "legacy-token"},
            }
        ]
    }
    session = _FakeSession([_FakeResponse(body=legacy), _FakeResponse(body=_translation_body())])
    client = _client(session)

    await client.translate("x", LanguageCode.ENGLISH, LanguageCode.HINDI)

    infer = session.requests[1]
    assert infer["url"] == "https://legacy.example/infer"
    assert infer["headers"]["Authorization"] == "legacy-token"


@pytest.mark.asyncio
async def test_http_error_raises_stage_error_for_that_stage():
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(status=503, body="upstream down")])
    client = _client(session)

    with pytest.raises(StageError) as excinfo:
        await client.translate("x", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert excinfo.value.stage is Stage.TRANSLATION
    assert excinfo.value.status == 503
    assert not isinstance(excinfo.value, NetworkError)


@pytest.mark.asyncio
async def test_malformed_body_raises_stage_error():
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body="<html>oops</html>")])
    client = _client(session)

    with pytest.raises(StageError) as excinfo:
        await client.translate("x", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert excinfo.value.stage is Stage.TRANSLATION


@pytest.mark.asyncio
async def test_missing_output_field_raises_stage_error():
    body = {"pipelineResponse": [{"output": [{"source": "x"}]}]}
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=body)])
    client = _client(session)

    with pytest.raises(StageError) as excinfo:
        await client.translate("x", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert excinfo.value.stage is Stage.TRANSLATION


@pytest.mark.asyncio
async def test_transport_failure_raises_network_error():
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), aiohttp.ClientConnectionError("refused")])
    client = _client(session)

    with pytest.raises(NetworkError) as excinfo:
        await client.translate("x", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert isinstance(excinfo.value, StageError)
    assert excinfo.value.stage is Stage.TRANSLATION
    assert isinstance(excinfo.value.cause, aiohttp.ClientConnectionError)


@pytest.mark.asyncio
async def test_resolve_step_is_retried_with_the_policy():
    sleep = SleepRecorder()
    session = _FakeSession(
        [
            _FakeResponse(status=502, body="bad gateway"),
            _FakeResponse(body=RESOLVE_OK),
            _FakeResponse(body=_translation_body()),
        ]
    )
    client = _client(session, retry=RetryPolicy(max_retries=1, retry_delay_sec=1.0, sleep=sleep))

    result = await client.translate("x", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert result.translation
    assert sleep.delays == [1.0]
    assert len(session.requests) == 3


@pytest.mark.asyncio
async def test_resolve_failure_is_tagged_resolve():
    session = _FakeSession([_FakeResponse(status=401, body="unauthorized")])
    client = _client(session)

    with pytest.raises(StageError) as excinfo:
        await client.translate("x", LanguageCode.ENGLISH, LanguageCode.HINDI)

    assert excinfo.value.stage is Stage.RESOLVE


@pytest.mark.asyncio
async def test_missing_credentials_fail_before_any_request():
    session = _FakeSession([])
    client = BhashiniClient(ProviderConfig(api_key="", user_id=""), session_factory=lambda: session)

    with pytest.raises(StageError) as excinfo:
        await client.synthesize("hello", LanguageCode.ENGLISH)

    assert excinfo.value.stage is Stage.RESOLVE
    assert session.requests == []


@pytest.mark.asyncio
async def test_transcribe_sends_base64_audio_and_reads_detected_language():
    asr_body = {
        "pipelineResponse": [
            {"output": [{"source": " theft happened near the market ", "confidence": 0.93, "language": "en"}]}
        ]
    }
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=asr_body)])
    client = _client(session)

    result = await client.transcribe(b"\x00\x01wav", LanguageCode.HINDI)

    assert result.transcript == "theft happened near the market"
    assert result.confidence == pytest.approx(0.93)
    assert result.detected_language is LanguageCode.ENGLISH
    infer = session.requests[1]["json"]
    assert infer["inputData"]["audio"][0]["audioContent"] == base64.b64encode(b"\x00\x01wav").decode()
    assert infer["pipelineTasks"][0]["config"]["samplingRate"] == 16000


@pytest.mark.asyncio
async def test_transcribe_ignores_unknown_detected_language():
    asr_body = {"pipelineResponse": [{"output": [{"source": "bonjour", "language": "fr"}]}]}
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=asr_body)])
    client = _client(session)

    result = await client.transcribe(b"wav", LanguageCode.HINDI)

    assert result.detected_language is None


@pytest.mark.asyncio
async def test_empty_transcript_is_a_stage_error():
    asr_body = {"pipelineResponse": [{"output": [{"source": "   "}]}]}
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=asr_body)])
    client = _client(session)

    with pytest.raises(StageError) as excinfo:
        await client.transcribe(b"wav", LanguageCode.HINDI)

    assert excinfo.value.stage is Stage.ASR


@pytest.mark.asyncio
async def test_synthesize_decodes_audio_and_duration():
    tts_body = {"pipelineResponse": [{"audio": [{"audioContent": base64.b64encode(b"RIFFdata").decode(), "duration": 2.5}]}]}
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=tts_body)])
    client = _client(session)

    result = await client.synthesize("चोरी हुई", LanguageCode.HINDI)

    assert result.audio == b"RIFFdata"
    assert result.duration == 2.5
    config = session.requests[1]["json"]["pipelineTasks"][0]["config"]
    assert config["samplingRate"] == 22050
    assert config["gender"] == "female"


@pytest.mark.asyncio
async def test_synthesize_rejects_invalid_audio_payload():
    tts_body = {"pipelineResponse": [{"audio": [{"audioContent": "not base64!!"}]}]}
    session = _FakeSession([_FakeResponse(body=RESOLVE_OK), _FakeResponse(body=tts_body)])
    client = _client(session)

    with pytest.raises(StageError) as excinfo:
        await client.synthesize("x", LanguageCode.HINDI)

    assert excinfo.value.stage is Stage.TTS


@pytest.mark.asyncio
async def test_probe_reports_up_for_successful_head():
    session = _FakeSession([_FakeResponse(status=200)])
    client = _client(session)

    probe = await client.probe()

    assert probe.is_up is True
    assert probe.latency_ms >= 0
    assert session.requests[0]["method"] == "HEAD"


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", [_FakeResponse(status=500), aiohttp.ClientConnectionError("down"), RuntimeError("boom")])
async def test_probe_never_raises(outcome):
    session = _FakeSession([outcome])
    client = _client(session)

    probe = await client.probe()

    assert probe.is_up is False


@pytest.mark.asyncio
async def test_stop_closes_session():
    session = _FakeSession([_FakeResponse(status=200)])
    client = _client(session)
    await client.probe()

    await client.stop()

    assert session.closed is True


@pytest.mark.asyncio
async def test_stage_retry_repeats_resolve_without_nested_retries():
    sleep = SleepRecorder()
    session = _FakeSession(
        [
            _FakeResponse(status=502, body="bad gateway"),
            _FakeResponse(body=RESOLVE_OK),
            _FakeResponse(body=_translation_body()),
        ]
    )
    client = _client(session)
    stage_retry = RetryPolicy(max_retries=1, retry_delay_sec=1.0, sleep=sleep)

    result = await stage_retry.run(
        lambda: client.translate("x", LanguageCode.ENGLISH, LanguageCode.HINDI), stage=Stage.TRANSLATION
    )

    assert result.translation
    assert client.retry.max_retries == 0
    assert sleep.delays == [1.0]
    assert len(session.requests) == 3
