"""Image generation via Replicate FLUX models."""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

MODELS = {
    "schnell": "black-forest-labs/flux-schnell",
    "pro": "black-forest-labs/flux-1.1-pro",
}

MODEL_COSTS = {
    "schnell": 0.003,
    "pro": 0.055,
}

ASPECT_RATIOS = ("1:1", "16:9", "21:9", "2:3", "3:2", "4:5", "5:4", "9:16", "9:21")

PLATFORM_ASPECT_RATIOS = {
    "instagram": "4:5",
    "facebook": "1:1",
    "twitter": "16:9",
    "linkedin": "1:1",
    "tiktok": "9:16",
    "pinterest": "2:3",
    "threads": "1:1",
    "youtube": "16:9",
    "bluesky": "16:9",
    "googlebusiness": "1:1",
}

_STYLE_MAP = {
    "photo": "professional photograph, high quality, commercial photography, well-lit",
    "illustration": "digital illustration, colorful, modern, clean design",
    "flat-design": "flat design, minimalist, modern, clean, vector style",
}


def suggest_aspect_ratio(platforms: list[str]) -> str:
    """Best ratio for a single platform; 1:1 when several share the image."""
    if len(platforms) == 1:
        return PLATFORM_ASPECT_RATIOS.get(platforms[0], "1:1")
    return "1:1"


def build_image_prompt(business_name: str, business_type: str, description: str, style: str = "photo") -> str:
    style_str = _STYLE_MAP.get(style, _STYLE_MAP["photo"])
    return (
        f"{style_str}, {description}, for a {business_type} called \"{business_name}\", "
        "social media marketing image, vibrant, inviting, no text overlay"
    )


def image_cost(model: str, count: int, markup: float) -> tuple[float, float]:
    real = round(MODEL_COSTS.get(model, MODEL_COSTS["schnell"]) * max(1, count), 4)
    return real, round(real * markup, 4)


class ReplicateService:
    """Runs a FLUX prediction and checks that every returned URL is reachable."""

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self._transport = transport

    async def _run_prediction(self, client: httpx.AsyncClient, model_id: str, payload: dict) -> list[str]:
        response = await client.post(
            f"{self.settings.replicate_base_url}/models/{model_id}/predictions",
            json={"input": payload},
            headers={
                "Authorization": f"Bearer {self.settings.replicate_api_token}",
                "Content-Type": "application/json",
                "Prefer": "wait",
            },
        )
        response.raise_for_status()
        data = response.json()
        if data.get("status") == "failed":
            raise httpx.HTTPError(str(data.get("error") or "prediction failed"))
        output = data.get("output")
        if isinstance(output, str):
            output = [output]
        images = []
        for item in output or []:
            if isinstance(item, str):
                images.append(item)
            elif isinstance(item, dict) and isinstance(item.get("url"), str):
                images.append(item["url"])
        return images

    async def _reachable(self, client: httpx.AsyncClient, url: str) -> bool:
        try:
            resp = await client.head(url, follow_redirects=True)
        except httpx.HTTPError as exc:
            logger.warning("image.head_failed", extra={"url": url[:120], "error": str(exc)})
            return False
        return resp.status_code < 400

    async def generate_image(
        self,
        prompt: str,
        model: str = "schnell",
        aspect_ratio: str = "1:1",
        num_outputs: int = 1,
        output_format: str = "webp",
    ) -> dict:
        """Generate images; regenerate once when a returned URL does not answer."""
        model = model if model in MODELS else "schnell"
        model_id = MODELS[model]
        num_outputs = max(1, min(4, int(num_outputs or 1)))
        failure = {
            "success": False,
            "images": [],
            "model": model_id,
            "cost_real": 0,
            "cost_client": 0,
        }
        if not self.settings.replicate_api_token:
            return {**failure, "error": "REPLICATE_API_TOKEN no está configurada"}
        if not (prompt or "").strip():
            return {**failure, "error": "El prompt de imagen está vacío"}

        payload = {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio if aspect_ratio in ASPECT_RATIOS else "1:1",
            "num_outputs": num_outputs,
            "output_format": output_format,
            "output_quality": 80,
        }
        if model == "schnell":
            payload["go_fast"] = True

        attempts = 0
        images: list[str] = []
        async with httpx.AsyncClient(timeout=120.0, transport=self._transport) as client:
            for attempts in (1, 2):
                try:
                    images = await self._run_prediction(client, model_id, payload)
                except httpx.HTTPError as exc:
                    logger.warning("image.prediction_failed", extra={"attempt": attempts, "error": str(exc)})
                    images = []
                    if attempts == 2:
                        return {**failure, "attempts": attempts, "error": str(exc)[:200]}
                    await asyncio.sleep(1.0)
                    continue
                if images:
                    checks = await asyncio.gather(*(self._reachable(client, u) for u in images))
                    if all(checks):
                        break
                    logger.warning("image.unreachable_output", extra={"attempt": attempts})
                images = []

        if not images:
            return {
                **failure,
                "attempts": attempts,
                "error": "No se generaron imágenes accesibles. Intente con un prompt diferente.",
            }

        cost_real, cost_client = image_cost(model, len(images), self.settings.image_markup_multiplier)
        logger.info("image.generated", extra={"model": model_id, "count": len(images), "attempts": attempts})
        return {
            "success": True,
            "images": images,
            "model": model_id,
            "cost_real": cost_real,
            "cost_client": cost_client,
            "attempts": attempts,
            "regenerated": attempts > 1,
            "expires_in": "1 hora",
        }
