import base64

import pytest

from healthlab.core.errors import InvalidSubmission
from healthlab.core.image_codec import decode_image_base64, encode_image, extension_from_mime


@pytest.mark.parametrize(
    "mime, ext",
    [("image/png", "png"), ("image/jpeg", "jpg"), ("image/JPG", "jpg"), ("image/webp", "webp"), ("image/gif", "png"), (None, "png")],
)
def test_extension_from_mime(mime, ext):
    assert extension_from_mime(mime) == ext


def test_encode_image_detects_by_header(tmp_path):
    path = tmp_path / "photo.bin"
    path.write_bytes(b"\xff\xd8\xff\xe0jpeg")

    payload = encode_image(str(path))

    assert payload.mime_type == "image/jpeg"
    assert payload.filename == "photo.bin"
    assert payload.data.startswith(b"\xff\xd8")


def test_encode_image_rejects_unknown_format(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("hello")

    with pytest.raises(ValueError):
        encode_image(str(path))


def test_decode_accepts_data_uri():
    encoded = base64.b64encode(b"RIFF\x00\x00\x00\x00WEBPdata").decode()

    payload = decode_image_base64(f"data:image/webp;base64,{encoded}", "image/webp")

    assert payload.filename == "reference.webp"
    assert payload.data.startswith(b"RIFF")
    assert payload.to_base64() == encoded


@pytest.mark.parametrize("encoded", ["not base64!", ""])
def test_decode_rejects_garbage(encoded):
    with pytest.raises(InvalidSubmission):
        decode_image_base64(encoded, "image/png")
