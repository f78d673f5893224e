import io
import tempfile

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from certverify.qr.payload import extract_cert_id
from certverify.qr import pipeline as qr_pipeline
from certverify.qr.pipeline import DEFAULT_PROFILES, SCAN_SUGGESTIONS, QRDecodingPipeline, attempt_profiles

PAYLOAD = "https://certs.example.org/verify/CERT-12345"


def _png(size=(1600, 1000), color="white") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class WidthDetector:
    """Decodes only when the transformed raster has a given width."""

    def __init__(self, width: int | None, payload: str = PAYLOAD):
        self.width = width
        self.payload = payload
        self.seen: list[tuple[int, int, int]] = []

    def __call__(self, pixels: bytes, width: int, height: int):
        self.seen.append((width, height, len(pixels)))
        return self.payload if width == self.width else None


@pytest.fixture
def scratch(tmp_path, monkeypatch):
    d = tmp_path / "scratch"
    d.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(d))
    return d


@pytest.mark.parametrize("payload,expected", [
    ("https://host/verify/CERT-12345", "CERT-12345"),
    ("CERT-777", "CERT-777"),
    ("  https://host/verify/CERT-9\n", "CERT-9"),
    ("https://host/verify/", ""),
    ("", ""),
    (None, ""),
])
def test_extract_cert_id(payload, expected):
    assert extract_cert_id(payload) == expected


def test_profiles_are_ordered_and_bounded():
    assert [p.bound for p in DEFAULT_PROFILES] == [300, 800, 600]
    enhanced = DEFAULT_PROFILES[2]
    assert (enhanced.brightness, enhanced.contrast, enhanced.sharpen) == (1.2, 1.3, True)


def test_first_attempt_fits_inside_300(scratch):
    det = WidthDetector(300)
    outcome = QRDecodingPipeline(detector=det).scan(_png((1600, 1000)))
    assert outcome.payload == PAYLOAD
    assert outcome.attempts == 1
    w, h, n = det.seen[0]
    assert w == 300 and h <= 300
    # 8-bit grayscale pixels
    assert n == w * h
    assert list(scratch.iterdir()) == []


def test_success_on_second_attempt_and_no_residue(scratch):
    det = WidthDetector(800)
    outcome = QRDecodingPipeline(detector=det).scan(_png((1600, 1000)), ".png")
    assert outcome.found
    assert outcome.attempts == 2
    assert [s[0] for s in det.seen] == [300, 800]
    assert list(scratch.iterdir()) == []


def test_success_on_third_enhanced_attempt(scratch):
    det = WidthDetector(600)
    outcome = QRDecodingPipeline(detector=det).scan(_png((1600, 1000), color=(90, 90, 90)))
    assert outcome.attempts == 3
    assert outcome.payload == PAYLOAD
    assert list(scratch.iterdir()) == []


def test_files_exist_only_during_attempts(scratch):
    seen_files = []

    def det(pixels, width, height):
        seen_files.append(sorted(p.name for p in scratch.rglob("*") if p.is_file()))
        return None

    outcome = QRDecodingPipeline(detector=det).scan(_png(), ".jpg")
    assert not outcome.found
    assert seen_files[0] == ["upload-resized.png", "upload.jpg"]
    assert seen_files[1] == ["upload-large.png", "upload.jpg"]
    assert list(scratch.rglob("*")) == []


def test_exhaustion_returns_suggestions(scratch):
    det = WidthDetector(None)
    outcome = QRDecodingPipeline(detector=det).scan(_png())
    assert not outcome.found
    assert outcome.attempts == 3
    assert outcome.suggestions == SCAN_SUGGESTIONS
    assert len(det.seen) == 3
    assert list(scratch.iterdir()) == []


def test_corrupt_image_counts_every_attempt(scratch):
    det = WidthDetector(300)
    outcome = QRDecodingPipeline(detector=det).scan(b"definitely not an image", ".png")
    assert not outcome.found
    assert outcome.attempts == 3
    assert det.seen == []
    assert list(scratch.iterdir()) == []


def test_detector_error_moves_to_next_attempt(scratch):
    calls = []

    def det(pixels, width, height):
        calls.append(width)
        if len(calls) == 1:
            raise RuntimeError("decoder crashed")
        return PAYLOAD

    outcome = QRDecodingPipeline(detector=det).scan(_png())
    assert outcome.attempts == 2
    assert outcome.payload == PAYLOAD
    assert list(scratch.iterdir()) == []


@pytest.mark.parametrize("n,names", [
    (-1, []),
    (0, []),
    (2, ["resized", "large"]),
    (9, ["resized", "large", "enhanced"]),
])
def test_attempt_profiles_clamps(n, names):
    assert [p.name for p in attempt_profiles(n)] == names


def _no_zbar():
    raise ImportError("Unable to find zbar shared library")


def test_missing_zbar_raises_instead_of_reporting_a_miss(scratch, monkeypatch):
    monkeypatch.setattr(qr_pipeline, "load_zbar_detector", _no_zbar)
    with pytest.raises(ImportError):
        QRDecodingPipeline().scan(_png())
    assert list(scratch.iterdir()) == []


def test_zbar_is_bound_once(scratch, monkeypatch):
    loads = []

    def loader():
        loads.append(1)
        return WidthDetector(300)

    monkeypatch.setattr(qr_pipeline, "load_zbar_detector", loader)
    qr = QRDecodingPipeline()
    assert qr.scan(_png()).found
    assert qr.scan(_png()).found
    assert loads == [1]


def test_fewer_profiles_shorten_the_bound(scratch):
    det = WidthDetector(800)
    outcome = QRDecodingPipeline(detector=det, profiles=DEFAULT_PROFILES[:1]).scan(_png())
    assert not outcome.found
    assert outcome.attempts == 1


def test_real_qr_code_decodes(scratch):
    qrcode = pytest.importorskip("qrcode")
    # pyzbar raises ImportError, not ModuleNotFoundError, when libzbar is absent
    pytest.importorskip("pyzbar.pyzbar", exc_type=ImportError)
    img = qrcode.make(PAYLOAD, box_size=2, border=4)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    outcome = QRDecodingPipeline().scan(buf.getvalue(), ".png")
    assert outcome.payload == PAYLOAD
    assert extract_cert_id(outcome.payload) == "CERT-12345"


# --- HTTP surface ---

def _upload(data=None, name="cert.png", content_type="image/png"):
    return {"image": (name, data if data is not None else _png(), content_type)}


def test_scan_endpoint_returns_payload(client, env):
    env.svc.qr = QRDecodingPipeline(detector=WidthDetector(800))
    r = client.post("/qr/scan", files=_upload())
    assert r.status_code == 200, r.text
    assert r.json() == {"success": True, "qrData": PAYLOAD}


def test_scan_endpoint_not_found_has_suggestions(client, env):
    env.svc.qr = QRDecodingPipeline(detector=WidthDetector(None))
    r = client.post("/qr/scan", files=_upload())
    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert body["suggestions"] == SCAN_SUGGESTIONS


def test_scan_endpoint_rejects_non_image(client, env):
    r = client.post("/qr/scan", files=_upload(b"hello", "notes.txt", "text/plain"))
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_scan_endpoint_requires_file(client):
    r = client.post("/qr/scan")
    assert r.status_code == 400


def test_verify_by_payload(client, env):
    rec = env.issue()
    r = client.get("/qr/verify", params={"data": f"https://certs.example.org/verify/{rec.cert_id}"})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["certificate"]["certId"] == rec.cert_id
    assert body["certificate"]["courseName"] == "Blockchain 101"


def test_verify_by_payload_missing_or_unknown(client):
    assert client.get("/qr/verify").status_code == 400
    r = client.get("/qr/verify", params={"data": "https://certs.example.org/verify/"})
    assert r.status_code == 404
    assert client.get("/qr/verify", params={"data": "https://x/verify/CERT-0"}).status_code == 404


def test_verify_uploaded_image_end_to_end(client, env):
    rec = env.issue()
    env.svc.qr = QRDecodingPipeline(detector=WidthDetector(300, payload=f"https://h/verify/{rec.cert_id}"))
    r = client.post("/qr/verify", files=_upload())
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["valid"] is True
    assert body["cert"]["certId"] == rec.cert_id
    assert body["qrData"].endswith(rec.cert_id)


def test_scan_endpoint_missing_zbar_is_server_error(env, monkeypatch):
    from certverify.api.main import app
    from certverify.api.services import get_services

    monkeypatch.setattr(qr_pipeline, "load_zbar_detector", _no_zbar)
    env.svc.qr = QRDecodingPipeline()
    app.dependency_overrides[get_services] = lambda: env.svc
    try:
        r = TestClient(app, raise_server_exceptions=False).post("/qr/scan", files=_upload())
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 500
    assert r.json() == {"success": False, "message": "Internal server error."}
