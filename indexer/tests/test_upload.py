import json

import httpx
import pytest

from indexer.app.errors import UploadFailed, ValidationFailed
from indexer.app.storage.upload import (
    put_to_presigned_url,
    request_presigned_put,
    upload_photo,
)
from indexer.tests.fixtures.ledger_factory import photo_bytes, photo_hash

pytestmark = pytest.mark.anyio

PRESIGN = "https://presign.test/upload"


class PresignServer:
    def __init__(self, presign_status: int = 200, put_status: int = 200) -> None:
        self.presign_status = presign_status
        self.put_status = put_status
        self.presign_bodies = []
        self.uploads = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            body = json.loads(request.content)
            self.presign_bodies.append(body)
            return httpx.Response(
                self.presign_status,
                json={"uploadURL": f"https://bucket.test/{body['key']}?sig=1", "key": body["key"]},
            )
        self.uploads.append(
            (str(request.url), request.headers.get("content-type"), request.content)
        )
        return httpx.Response(self.put_status)


def client_for(server) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(server))


async def test_upload_photo_hashes_presigns_and_puts():
    server = PresignServer()
    data = photo_bytes("upload")

    uploaded = await upload_photo(
        client_for(server),
        presign_endpoint=PRESIGN,
        bucket="photoverifier",
        device_group_id="Seek1",
        data=data,
    )

    expected_key = f"photos/Seek1/{photo_hash('upload').hex()}.jpg"
    assert uploaded.key == expected_key
    assert uploaded.storage_uri == f"s3://photoverifier/{expected_key}"
    assert uploaded.hash32 == photo_hash("upload")

    assert server.presign_bodies == [{"key": expected_key, "contentType": "image/jpeg"}]
    url, content_type, body = server.uploads[0]
    assert url.startswith(f"https://bucket.test/{expected_key}")
    assert content_type == "image/jpeg"
    assert body == data


async def test_presign_error_is_upload_failed():
    with pytest.raises(UploadFailed) as exc_info:
        await request_presigned_put(client_for(PresignServer(presign_status=500)), PRESIGN, "k", "image/jpeg")

    assert exc_info.value.status_code == 500


async def test_malformed_presign_response_is_upload_failed():
    client = client_for(lambda request: httpx.Response(200, json={"nope": True}))

    with pytest.raises(UploadFailed):
        await request_presigned_put(client, PRESIGN, "k", "image/jpeg")


async def test_non_success_put_is_upload_failed():
    with pytest.raises(UploadFailed) as exc_info:
        await put_to_presigned_url(
            client_for(PresignServer(put_status=403)),
            "https://bucket.test/k?sig=1",
            b"bytes",
            "image/jpeg",
        )

    assert exc_info.value.status_code == 403


async def test_put_transport_error_is_upload_failed():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UploadFailed):
        await put_to_presigned_url(client_for(handler), "https://bucket.test/k", b"x", "image/png")


@pytest.mark.parametrize(
    "content_type, extension",
    [("image/png", "png"), ("image/webp", "webp"), ("image/jpeg; charset=binary", "jpg")],
)
async def test_key_extension_follows_content_type(content_type, extension):
    server = PresignServer()

    uploaded = await upload_photo(
        client_for(server),
        presign_endpoint=PRESIGN,
        bucket="photoverifier",
        device_group_id="Seek1",
        data=photo_bytes("typed"),
        content_type=content_type,
    )

    assert uploaded.key == f"photos/Seek1/{photo_hash('typed').hex()}.{extension}"
    assert server.presign_bodies[0]["contentType"] == content_type


async def test_non_photo_content_type_is_rejected_before_presign():
    server = PresignServer()

    with pytest.raises(ValidationFailed):
        await upload_photo(
            client_for(server),
            presign_endpoint=PRESIGN,
            bucket="photoverifier",
            device_group_id="Seek1",
            data=b"%PDF-1.7",
            content_type="application/pdf",
        )

    assert server.presign_bodies == []
