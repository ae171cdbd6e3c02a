import base64
import binascii
import logging
import re
from dataclasses import dataclass

import httpx

from .exceptions import OcrError
from .validation import find_vin

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")


@dataclass
class OcrResult:
    found: bool
    vin: str | None = None
    raw_text: str | None = None


def decode_image(image: bytes | str) -> bytes:
    """
    Turn a data URL or plain base64 string into image bytes.

    Bytes are passed through untouched.
    """
    if isinstance(image, bytes):
        return image
    # MIME-wrapped payloads carry line breaks
    payload = "".join(DATA_URL_PREFIX.sub("", image.strip()).split())
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise OcrError("Image payload is not valid base64") from e


class VisionClient:
    """
    Text detection through the Google Cloud Vision REST API.
    """

    def __init__(self, api_key: str | None, api_url: str, http_client: httpx.AsyncClient):
        self.api_key = api_key
        self.api_url = api_url
        self.http_client = http_client

    async def detect_text(self, image_bytes: bytes) -> str | None:
        """
        Send an image to the Vision API.

        Args:
            image_bytes (bytes): The raw image.

        Returns:
            str | None: The full detected text, or None if the image holds no text.
        """
        if not self.api_key:
            raise OcrError("OCR provider is not configured")

        body = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(image_bytes).decode("ascii")},
                    "features": [{"type": "TEXT_DETECTION"}],
                }
            ]
        }
        try:
            response = await self.http_client.post(self.api_url, params={"key": self.api_key}, json=body)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.exception("Error occurred during text detection")
            raise OcrError(f"OCR request failed: {e}") from e

        try:
            result = (data.get("responses") or [{}])[0]
            error = result.get("error")
            annotations = result.get("textAnnotations") or []
            text = annotations[0].get("description") if annotations else None
        except (AttributeError, KeyError, TypeError, IndexError) as e:
            logger.error(f"Malformed OCR response: {data!r}")
            raise OcrError("Malformed OCR response") from e

        if error is not None:
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            logger.error(f"Vision API returned an error: {message}")
            raise OcrError(message)
        if text is not None and not isinstance(text, str):
            raise OcrError("Malformed OCR response")
        return text

    async def extract_vin(self, image: bytes | str) -> OcrResult:
        """
        Detect text in an image and pick the first VIN-shaped substring.
        """
        text = await self.detect_text(decode_image(image))
        if not text:
            logger.info("No text detected in image")
            return OcrResult(found=False)

        vin = find_vin(text)
        if vin is None:
            logger.info("Text detected but no VIN found")
            return OcrResult(found=False, raw_text=text)

        logger.info(f"Successfully extracted VIN: '{vin}'")
        return OcrResult(found=True, vin=vin, raw_text=text)
