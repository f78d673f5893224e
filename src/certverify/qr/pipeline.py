from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, ImageEnhance, ImageFilter, ImageOps
from pydantic import BaseModel

# (pixels, width, height) of an 8-bit grayscale raster -> payload or None
Detector = Callable[[bytes, int, int], Optional[str]]

SCAN_SUGGESTIONS = [
    "Make sure the QR code is clearly visible in the image",
    "Try taking a photo in better lighting",
    "Ensure the QR code is not blurry or distorted",
    "For certificate images, make sure the QR code area is well-lit",
]


class TransformProfile(BaseModel):
    name: str
    bound: int  # fit inside bound x bound, aspect preserved
    brightness: float = 1.0
    contrast: float = 1.0
    sharpen: bool = False

    def apply(self, img: Image.Image) -> Image.Image:
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        out = ImageOps.contain(img, (self.bound, self.bound), method=Image.Resampling.LANCZOS)
        if self.brightness != 1.0:
            out = ImageEnhance.Brightness(out).enhance(self.brightness)
        if self.contrast != 1.0:
            out = ImageEnhance.Contrast(out).enhance(self.contrast)
        if self.sharpen:
            out = out.filter(ImageFilter.SHARPEN)
        return out


DEFAULT_PROFILES = [
    # QR code fills the frame
    TransformProfile(name="resized", bound=300),
    # QR code embedded in a full certificate image
    TransformProfile(name="large", bound=800),
    # low quality / low contrast captures
    TransformProfile(name="enhanced", bound=600, brightness=1.2, contrast=1.3, sharpen=True),
]


class ScanOutcome(BaseModel):
    payload: str | None = None
    attempts: int = 0
    suggestions: list[str] = []

    @property
    def found(self) -> bool:
        return bool(self.payload)


def attempt_profiles(max_attempts: int) -> list[TransformProfile]:
    """The first ``max_attempts`` default profiles; non-positive means none."""
    return DEFAULT_PROFILES[: max(max_attempts, 0)]


def load_zbar_detector() -> Detector:
    """Bind pyzbar. Raises ImportError when the zbar shared library is missing on the host."""
    from pyzbar.pyzbar import ZBarSymbol, decode

    def detect(pixels: bytes, width: int, height: int) -> str | None:
        for symbol in decode((pixels, width, height), symbols=[ZBarSymbol.QRCODE]):
            return symbol.data.decode("utf-8", errors="ignore")
        return None

    return detect


class QRDecodingPipeline:
    """Decode a QR payload through a bounded, ordered list of image transforms.

    Every file the scan touches (the upload and each transformed raster) lives
    in a request-scoped temporary directory that is removed on every exit path.
    """

    def __init__(self, detector: Detector | None = None, profiles: list[TransformProfile] | None = None):
        self.detector = detector
        self.profiles = list(DEFAULT_PROFILES if profiles is None else profiles)

    def scan(self, image_bytes: bytes, suffix: str = ".png") -> ScanOutcome:
        if self.detector is None and self.profiles:
            # outside the per-attempt handler: a missing decoder is a host fault, not a miss
            self.detector = load_zbar_detector()
        with tempfile.TemporaryDirectory(prefix="qr-scan-") as tmp:
            workdir = Path(tmp)
            source = workdir / f"upload{_clean_suffix(suffix)}"
            source.write_bytes(image_bytes)
            try:
                for attempt, profile in enumerate(self.profiles, start=1):
                    logging.info("[ScanQR] Attempt %d/%d (%s)", attempt, len(self.profiles), profile.name)
                    payload = self._attempt(source, workdir, profile)
                    if payload:
                        logging.info("[ScanQR] QR code found on attempt %d", attempt)
                        return ScanOutcome(payload=payload, attempts=attempt)
            finally:
                source.unlink(missing_ok=True)
        return ScanOutcome(attempts=len(self.profiles), suggestions=list(SCAN_SUGGESTIONS))

    def _attempt(self, source: Path, workdir: Path, profile: TransformProfile) -> str | None:
        transformed = workdir / f"{source.stem}-{profile.name}.png"
        try:
            with Image.open(source) as img:
                profile.apply(img).save(transformed, format="PNG")
            with Image.open(transformed) as out:
                gray = out.convert("L")
            return self.detector(gray.tobytes(), gray.width, gray.height)
        except Exception as e:  # corrupt or unsupported image: count the attempt and move on
            logging.warning("[ScanQR] Attempt %s failed: %s", profile.name, e)
            return None
        finally:
            transformed.unlink(missing_ok=True)


def _clean_suffix(suffix: str | None) -> str:
    if not suffix or not suffix.startswith(".") or not suffix[1:].isalnum() or len(suffix) > 8:
        return ".img"
    return suffix.lower()
