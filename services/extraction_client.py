"""
Extraction client for the AI listing analysis service.

Sends pasted page content to the extraction endpoint and adapts the
heterogeneous responses into a ParsedPost. Every request is bounded by a
timeout and observes the post's cancellation token.
"""

import asyncio
import json
import math
import re
from typing import Any, Optional
import structlog

import httpx

from config import settings
from models.post import (
    CarHistory,
    ListingExtras,
    ListingTranslations,
    ParsedPost,
    VehicleInfo,
    VehicleSpecs,
)
from exceptions import (
    ExtractionError,
    ExtractionTimeoutError,
    ExtractionCancelledError,
)
from utils.cancellation import CancellationToken
from utils.text_utils import (
    arabic_label,
    clean_text,
    fill_arabic,
    normalize_features,
    split_list,
)

logger = structlog.get_logger(__name__)

_CODE_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_CODE_FENCE_END = re.compile(r"\s*```$")

# Longest response body excerpt carried in error messages
ERROR_BODY_LIMIT = 500


# ===================
# RESPONSE ADAPTATION
# ===================

def decode_json_text(text: str) -> Any:
    """
    Decode JSON that may be wrapped in a markdown code fence.

    Raises:
        ValueError: If the text is not JSON
    """
    stripped = _CODE_FENCE_END.sub("", _CODE_FENCE_START.sub("", text.strip()))
    return json.loads(stripped)


def _to_int(value: Any) -> Optional[int]:
    """Whole number from a loose field; non-numeric or non-finite values give None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            value = float(value.strip().replace(",", ""))
        except ValueError:
            return None
    if not isinstance(value, float) or not math.isfinite(value):
        return None
    try:
        return int(value)
    except (OverflowError, ValueError):
        return None


def _get(obj: Any, key: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(key)
    return None


def _select_item(res: Any) -> Optional[dict]:
    """Pick the candidate object out of a response body."""
    if isinstance(res, str):
        try:
            res = decode_json_text(res)
        except ValueError:
            logger.warning("extraction_response_not_json")
            return None

    if isinstance(res, list):
        if not res:
            return None
        successful = next(
            (item for item in res if isinstance(item, dict) and item.get("success") is True),
            None
        )
        item = successful if successful is not None else res[0]
        if isinstance(item, str):
            return _select_item(item)
        return item if isinstance(item, dict) else None

    if isinstance(res, dict):
        return res
    return None


def _car_history(value: Any) -> Optional[CarHistory]:
    if isinstance(value, str):
        try:
            value = decode_json_text(value)
        except ValueError:
            return None
    if not isinstance(value, dict):
        return None
    return CarHistory(
        single_owner=bool(value.get("single_owner")),
        no_accident_history=bool(value.get("no_accident_history")),
        full_service_history=bool(value.get("full_service_history")),
    )


def adapt_response(res: Any, fallback_url: str) -> ParsedPost:
    """
    Adapt an extraction response to a ParsedPost.

    Accepts a single object, an array of candidates (first item with
    success: true, else the first item) or a JSON string, optionally code
    fenced. Missing fields default to None or empty lists.

    Args:
        res: Decoded response body
        fallback_url: Listing URL, used for the fallback title

    Returns:
        ParsedPost (never raises on missing fields)
    """
    item = _select_item(res)
    if item is None:
        return ParsedPost(title=f"Parsed: {fallback_url}", notes="No fields returned")

    year = _to_int(item.get("year"))
    make = clean_text(item.get("make"))
    model = clean_text(item.get("model"))

    title = (
        clean_text(_get(item.get("data"), "title"))
        or clean_text(item.get("title"))
        or clean_text(_get(item.get("result"), "title"))
    )
    if not title and year and make and model:
        title = f"{year} {make} {model}"
    title = title or f"Parsed: {fallback_url}"

    notes = (
        clean_text(_get(item.get("data"), "notes"))
        or clean_text(item.get("summary"))
        or clean_text(item.get("message"))
        or "Parsed from AI"
    )

    vehicle = VehicleInfo(
        year=year,
        make=make,
        model=model,
        vin=clean_text(item.get("vin")),
        condition=clean_text(item.get("condition")),
        mileage=_to_int(item.get("mileage")),
        drivetrain=clean_text(item.get("drivetrain")),
        fuel_type=clean_text(item.get("fuel")),
        engine=clean_text(item.get("engine")),
    )

    exterior = normalize_features(item.get("exterior_features"))
    interior = normalize_features(item.get("interior_features"))
    safety = normalize_features(item.get("safety_tech"))

    specs = VehicleSpecs(
        exterior_color=clean_text(item.get("exterior_color")),
        interior_color=clean_text(item.get("interior_color")),
        exterior_features=exterior,
        interior_features=interior,
        safety_and_tech=safety,
    )

    raw_translations = item.get("translations")
    if not isinstance(raw_translations, dict):
        raw_translations = {}
    translations = ListingTranslations(
        title_ar=clean_text(raw_translations.get("title_ar")),
        make_ar=clean_text(raw_translations.get("make_ar")) or arabic_label(make),
        model_ar=clean_text(raw_translations.get("model_ar")) or arabic_label(model),
        fuel_ar=clean_text(raw_translations.get("fuel_ar")) or arabic_label(vehicle.fuel_type),
        drivetrain_ar=clean_text(raw_translations.get("drivetrain_ar")) or arabic_label(vehicle.drivetrain),
        engine_ar=clean_text(raw_translations.get("engine_ar")),
        exterior_color_ar=clean_text(raw_translations.get("exterior_color_ar")),
        interior_color_ar=clean_text(raw_translations.get("interior_color_ar")),
        exterior_features_ar=fill_arabic(exterior, split_list(raw_translations.get("exterior_features_ar"))),
        interior_features_ar=fill_arabic(interior, split_list(raw_translations.get("interior_features_ar"))),
        safety_tech_ar=fill_arabic(safety, split_list(raw_translations.get("safety_tech_ar"))),
    )

    return ParsedPost(
        title=title,
        notes=notes,
        vehicle=vehicle if any(v is not None for v in vehicle.model_dump().values()) else None,
        specs=specs if any(specs.model_dump().values()) else None,
        extras=ListingExtras(car_history=_car_history(item.get("car_history")), raw=item),
        translations=translations if any(translations.model_dump().values()) else None,
        mileage_unit=clean_text(item.get("mileage_unit")),
        country=clean_text(item.get("country")),
        state=clean_text(item.get("state")),
        city=clean_text(item.get("city")),
        price=_to_int(item.get("price")),
        exterior_features=exterior,
        interior_features=interior,
        safety_tech=safety,
    )


# ===================
# CLIENT
# ===================

class ExtractionClient:
    """
    HTTP client for the extraction endpoint.

    The request body is exactly {source, url, raw, version, locale}.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        source: Optional[str] = None,
        version: Optional[str] = None,
        locale: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint or settings.extraction_url
        self.source = source or settings.extraction_source
        self.version = version or settings.extraction_version
        self.locale = locale or settings.extraction_locale
        self.timeout_seconds = timeout_seconds or settings.extraction_timeout_seconds
        self._client = http_client or httpx.AsyncClient(
            headers={"Content-Type": "application/json"}
        )

    def build_payload(self, url: str, raw: str) -> dict[str, str]:
        return {
            "source": self.source,
            "url": url,
            "raw": raw,
            "version": self.version,
            "locale": self.locale,
        }

    async def extract(
        self,
        url: str,
        raw: str,
        timeout: Optional[float] = None,
        token: Optional[CancellationToken] = None,
    ) -> ParsedPost:
        """
        Run one extraction.

        Args:
            url: Listing URL
            raw: Pasted page content
            timeout: Seconds before giving up (default from settings)
            token: Cancellation token observed while the request is in flight

        Returns:
            ParsedPost adapted from the response

        Raises:
            ExtractionCancelledError: Token was cancelled
            ExtractionTimeoutError: No answer within the timeout
            ExtractionError: Network failure, non-2xx status or malformed body
        """
        timeout = timeout or self.timeout_seconds
        if token is not None and token.cancelled:
            raise ExtractionCancelledError()

        logger.info("extraction_started", url=url, raw_length=len(raw), timeout=timeout)
        loop = asyncio.get_running_loop()
        started = loop.time()

        request = asyncio.ensure_future(self._post(self.build_payload(url, raw), timeout))
        waiters = {request}
        cancel_waiter = None
        if token is not None:
            cancel_waiter = asyncio.ensure_future(token.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        duration_ms = int((loop.time() - started) * 1000)

        if request in done:
            body = request.result()
            logger.info("extraction_completed", url=url, duration_ms=duration_ms)
            try:
                return adapt_response(body, url)
            except Exception as e:
                logger.error("extraction_response_unusable", url=url, error=str(e), error_type=type(e).__name__)
                raise ExtractionError(
                    "Analyze response could not be read",
                    details={"error": str(e)}
                ) from e

        if cancel_waiter is not None and cancel_waiter in done:
            logger.info("extraction_cancelled", url=url, reason=token.reason, duration_ms=duration_ms)
            raise ExtractionCancelledError()

        logger.warning("extraction_timed_out", url=url, timeout=timeout)
        raise ExtractionTimeoutError(timeout)

    async def _post(self, payload: dict[str, str], timeout: float) -> Any:
        try:
            response = await self._client.post(
                self.endpoint,
                json=payload,
                timeout=timeout
            )
        except httpx.TimeoutException as e:
            raise ExtractionTimeoutError(timeout) from e
        except httpx.HTTPError as e:
            logger.warning("extraction_network_error", error=str(e), error_type=type(e).__name__)
            raise ExtractionError(
                "Network error: Unable to connect to AI service",
                details={"error": str(e)}
            ) from e

        if not response.is_success:
            body = response.text[:ERROR_BODY_LIMIT] or "Unknown error"
            logger.warning("extraction_http_error", status_code=response.status_code)
            raise ExtractionError(
                f"Analyze failed ({response.status_code}): {body}",
                details={"status_code": response.status_code}
            )

        try:
            return response.json()
        except ValueError:
            pass
        try:
            return decode_json_text(response.text)
        except ValueError as e:
            raise ExtractionError("Invalid JSON response from analyze API") from e

    async def aclose(self) -> None:
        await self._client.aclose()
