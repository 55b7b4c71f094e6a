import httpx
import pytest

from common.errors import NetworkError, PreconditionError, PublishError, RequestTimeoutError
from services.cam_poster.publisher import ChunkedPublisher, PublishState, make_publish_client

from conftest import MEDIA_ID, STATUS_URL, UPLOAD_URL, FakeTwitter


def _publisher(handler) -> ChunkedPublisher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChunkedPublisher(client, upload_url=UPLOAD_URL, status_url=STATUS_URL)


@pytest.fixture
def gif_file(tmp_path):
    p = tmp_path / "camera.gif"
    p.write_bytes(b"GIF89a" + bytes(range(256)) * 4)
    return p


@pytest.mark.asyncio
async def test_phases_run_in_order_with_one_handle(fake_twitter, gif_file):
    pub = _publisher(fake_twitter)
    result = await pub.publish(gif_file, "I-70/I-71 East Split")

    assert fake_twitter.commands == ["INIT", "APPEND", "FINALIZE", "STATUS"]
    init, append, finalize, status = fake_twitter.calls
    assert init["total_bytes"] == str(gif_file.stat().st_size)
    assert init["media_type"] == "image/gif"
    assert append["media_id"] == MEDIA_ID
    assert append["segment_index"] == "0"
    assert finalize["media_id"] == MEDIA_ID
    assert status["media_ids"] == MEDIA_ID
    assert status["status"] == "I-70/I-71 East Split"
    assert gif_file.read_bytes() in fake_twitter.media_payloads[0]

    assert pub.state is PublishState.PUBLISHED
    assert result["id_str"] == "1050118621198921728"


@pytest.mark.asyncio
async def test_append_failure_skips_later_phases(gif_file):
    fake = FakeTwitter(fail_on="APPEND")
    pub = _publisher(fake)
    with pytest.raises(NetworkError):
        await pub.publish(gif_file, "caption")
    assert fake.commands == ["INIT", "APPEND"]
    assert pub.state is PublishState.FAILED


@pytest.mark.asyncio
async def test_init_without_media_id_is_rejected(gif_file):
    fake = FakeTwitter(init_body={"error": "nope"})
    pub = _publisher(fake)
    with pytest.raises(PublishError):
        await pub.publish(gif_file, "caption")
    assert fake.commands == ["INIT"]
    assert pub.media_id is None


@pytest.mark.asyncio
async def test_failed_processing_stops_before_status(gif_file):
    fake = FakeTwitter(finalize_body={"media_id_string": MEDIA_ID, "processing_info": {"state": "failed"}})
    pub = _publisher(fake)
    with pytest.raises(PublishError):
        await pub.publish(gif_file, "caption")
    assert fake.commands == ["INIT", "APPEND", "FINALIZE"]


@pytest.mark.asyncio
async def test_non_json_response_is_publish_error(gif_file):
    pub = _publisher(lambda request: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(PublishError):
        await pub.init_upload(10)


@pytest.mark.asyncio
async def test_out_of_order_phases_do_not_reach_network(fake_twitter):
    pub = _publisher(fake_twitter)
    with pytest.raises(PublishError):
        await pub.append(b"data")
    with pytest.raises(PublishError):
        await pub.finalize()
    assert fake_twitter.calls == []

    await pub.init_upload(4)
    with pytest.raises(PublishError):
        await pub.finalize()
    with pytest.raises(PublishError):
        await pub.post_status("caption")
    with pytest.raises(PublishError):
        await pub.init_upload(4)
    assert fake_twitter.commands == ["INIT"]
    assert pub.media_id == MEDIA_ID


@pytest.mark.asyncio
async def test_timeout_maps_to_request_timeout(gif_file):
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    pub = _publisher(handler)
    with pytest.raises(RequestTimeoutError):
        await pub.publish(gif_file, "caption")
    assert pub.state is PublishState.FAILED


def test_publish_client_requires_all_credentials():
    with pytest.raises(PreconditionError):
        make_publish_client({"consumer_key": "ck", "consumer_secret": "cs", "access_token": "at"})


@pytest.mark.asyncio
async def test_signed_client_keeps_gif_bytes_in_append(fake_twitter, gif_file):
    creds = {"consumer_key": "ck", "consumer_secret": "cs", "access_token": "at", "access_token_secret": "ats"}
    async with make_publish_client(creds, transport=httpx.MockTransport(fake_twitter)) as client:
        pub = ChunkedPublisher(client, upload_url=UPLOAD_URL, status_url=STATUS_URL)
        await pub.publish(gif_file, "caption")

    assert fake_twitter.commands == ["INIT", "APPEND", "FINALIZE", "STATUS"]
    assert fake_twitter.calls[1]["media_id"] == MEDIA_ID
    assert gif_file.read_bytes() in fake_twitter.media_payloads[0]
    assert all(h["authorization"].startswith("OAuth ") for h in fake_twitter.headers)
