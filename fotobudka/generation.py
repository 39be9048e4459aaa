"""Async client for the fotobudka generation API.

Every generation endpoint reduces to the same pipeline: submit a job,
poll its status on a fixed cadence until it is terminal, then download the
result either from an absolute URL (unauthenticated) or through the
file-retrieval endpoint (bearer auth). Nothing here retries.
"""

from __future__ import annotations

import asyncio
import io
import logging
import tempfile
import uuid
from pathlib import Path
from typing import Any

from PIL import Image, UnidentifiedImageError

from fotobudka.errors import DecodingError, DownloadFailed, GenerationFailed
from fotobudka.gateway import FilePart, HttpGateway
from fotobudka.models import (
    TERMINAL_SUCCESS,
    EffectGroup,
    EffectItem,
    Generation,
    VideoTemplate,
    VideoTemplateGroup,
)

logger = logging.getLogger(__name__)

_DEFAULT_POLL_INTERVAL = 2.5
_JPEG_QUALITY = 85


def encode_jpeg(data: bytes) -> bytes:
    """Decode image bytes in any Pillow-supported format and re-encode as JPEG.

    Raises:
        DownloadFailed: If the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            rgb = img.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise DownloadFailed("Failed to load image.") from exc
    out = io.BytesIO()
    rgb.save(out, format="JPEG", quality=_JPEG_QUALITY)
    return out.getvalue()


def is_absolute_url(result: str) -> bool:
    return result.startswith("http://") or result.startswith("https://")


class GenerationClient:
    """Submit, poll and download generation jobs.

    Usage::

        client = GenerationClient(gateway)
        job_id = await client.start_effect(photo_bytes, template_id=7)
        result = await client.poll_until_finished(job_id)
        data = await client.download_result(result)
    """

    def __init__(
        self,
        gateway: HttpGateway,
        poll_interval: float = _DEFAULT_POLL_INTERVAL,
        max_attempts: int | None = None,
    ) -> None:
        self.gateway = gateway
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse_generation(data: Any) -> Generation:
        if not isinstance(data, dict) or data.get("id") in (None, ""):
            raise DecodingError(f"Could not extract generation id from response: {data!r}")
        tokens_cost = data.get("tokens_cost")
        return Generation(
            id=str(data["id"]),
            status=str(data.get("status") or "unknown"),
            type=data.get("type"),
            tokens_cost=int(tokens_cost) if isinstance(tokens_cost, (int, float)) else None,
            result=data.get("result") or None,
            error=data.get("error") or None,
        )

    async def _submit_multipart(
        self,
        path: str,
        fields: dict[str, str],
        file: FilePart | None,
    ) -> str:
        data = await self.gateway.post_multipart(path, fields, file, use_auth=True)
        generation = self._parse_generation(data)
        logger.info("Started %s: id=%s status=%s", path, generation.id, generation.status)
        return generation.id

    # ------------------------------------------------------------------
    # Public API: submission
    # ------------------------------------------------------------------

    async def start_nanobanana(self, prompt: str, image: bytes | None = None) -> str:
        """POST /api/generations/fotobudka/nanobanana (prompt, optional image)."""
        file = None
        if image is not None:
            file = FilePart("images", "image.jpg", encode_jpeg(image), "image/jpeg")
        logger.info("Submitting nanobanana: prompt=%r, image=%s", prompt[:80], image is not None)
        return await self._submit_multipart(
            "/api/generations/fotobudka/nanobanana", {"prompt": prompt}, file,
        )

    async def start_effect(self, photo: bytes, template_id: int) -> str:
        """POST /api/generations/fotobudka/effect (photo + template_id)."""
        logger.info("Submitting photo effect: template_id=%d", template_id)
        return await self._submit_multipart(
            "/api/generations/fotobudka/effect",
            {"template_id": str(template_id)},
            FilePart("photo", "photo.jpg", photo, "image/jpeg"),
        )

    async def start_video(self, photo: bytes, template_id: int) -> str:
        """POST /api/generations/fotobudka/video (photo + template_id)."""
        logger.info("Submitting video effect: template_id=%d", template_id)
        return await self._submit_multipart(
            "/api/generations/fotobudka/video",
            {"template_id": str(template_id)},
            FilePart("photo", "photo.jpg", photo, "image/jpeg"),
        )

    async def start_txt2video(
        self,
        prompt: str,
        aspect_ratio: str = "16:9",
        duration: str = "5",
        cfg_scale: float = 0.5,
        mode: str = "std",
        model_name: str = "kling-v2-master",
        negative_prompt: str = "",
    ) -> str:
        """POST /api/generations/fotobudka/txt2video (JSON body).

        Args:
            prompt: The video generation prompt.
            aspect_ratio: Output aspect ratio.
            duration: Video duration in seconds, as the backend expects it.
            cfg_scale: Classifier-free guidance scale.
            mode: Generation mode ("std" or "pro").
            model_name: Backend model identifier.
            negative_prompt: Things to avoid.

        Returns:
            The backend generation id.
        """
        body = {
            "prompt": prompt,
            "aspect_ratio": aspect_ratio,
            "duration": duration,
            "cfg_scale": cfg_scale,
            "mode": mode,
            "model_name": model_name,
            "negative_prompt": negative_prompt,
        }
        logger.info("Submitting txt2video: prompt=%r", prompt[:80])
        data = await self.gateway.request(
            "/api/generations/fotobudka/txt2video", "POST", body, use_auth=True,
        )
        generation = self._parse_generation(data)
        logger.info("txt2video started: id=%s", generation.id)
        return generation.id

    async def start_video_enhance(
        self,
        video: bytes,
        upscale_factor: int,
        type_prompt: str,
        filename: str = "video.mp4",
        app_bundle: str | None = None,
        target_fps: int | None = None,
        h264_output: bool = True,
    ) -> str:
        """POST /api/generations/fal/video-enhance (video + upscale multiplier)."""
        fields = {
            "type": type_prompt,
            "upscale_factor": str(upscale_factor),
            "H264_output": "true" if h264_output else "false",
        }
        if app_bundle:
            fields["app_bundle"] = app_bundle
        if target_fps is not None:
            fields["target_fps"] = str(target_fps)
        logger.info("Submitting video enhance: upscale_factor=%d", upscale_factor)
        return await self._submit_multipart(
            "/api/generations/fal/video-enhance",
            fields,
            FilePart("video", filename or "video.mp4", video, "video/mp4"),
        )

    # ------------------------------------------------------------------
    # Public API: polling and download
    # ------------------------------------------------------------------

    async def get_generation(self, generation_id: str) -> Generation:
        """GET /api/generations/{id}."""
        data = await self.gateway.request(f"/api/generations/{generation_id}")
        return self._parse_generation(data)

    async def poll_until_finished(self, generation_id: str) -> str:
        """Poll a generation until it reaches a terminal state.

        Waits ``poll_interval`` before every status request. Cancelling the
        calling task aborts the wait immediately with CancellationError.

        Returns:
            The result reference (file name or absolute URL).

        Raises:
            GenerationFailed: The backend reported error/failed, or
                ``max_attempts`` polls went by without a terminal state.
            DownloadFailed: The job finished without a result reference.
        """
        poll_count = 0
        while self.max_attempts is None or poll_count < self.max_attempts:
            await asyncio.sleep(self.poll_interval)
            poll_count += 1
            generation = await self.get_generation(generation_id)
            logger.debug(
                "Poll #%d %s: status=%s result=%s error=%s",
                poll_count, generation_id, generation.status, generation.result, generation.error,
            )

            if generation.status in TERMINAL_SUCCESS:
                if generation.has_result:
                    logger.info("Generation %s done after %d polls", generation_id, poll_count)
                    return generation.result
                logger.warning("Generation %s finished with an empty result", generation_id)
                raise DownloadFailed()
            if generation.status == "error":
                raise GenerationFailed(generation.error or "Generation error")
            if generation.status == "failed":
                raise GenerationFailed(generation.error or "Generation failed")

        raise GenerationFailed("Generation timed out")

    async def download_result(self, result: str) -> bytes:
        """Fetch a result by absolute URL or through the file endpoint."""
        if is_absolute_url(result):
            logger.info("Downloading %s", result)
            data = await self.gateway.fetch_url(result)
        else:
            logger.info("Downloading /api/generations/file/%s", result)
            data = await self.gateway.get_bytes(f"/api/generations/file/{result}", use_auth=True)
        if not data:
            raise DownloadFailed()
        logger.info("Downloaded %.1f KB", len(data) / 1024)
        return data

    async def poll_download_video(self, generation_id: str) -> Path:
        """Poll, download and write the result video to a temporary file."""
        result = await self.poll_until_finished(generation_id)
        data = await self.download_result(result)
        output = Path(tempfile.gettempdir()) / f"video_{generation_id}_{uuid.uuid4().hex}.mp4"
        output.write_bytes(data)
        logger.info("Video saved to %s", output)
        return output

    # ------------------------------------------------------------------
    # Public API: full pipelines
    # ------------------------------------------------------------------

    async def run_nanobanana(self, prompt: str, image: bytes | None = None) -> bytes:
        """Submit → poll → download; returns the result as JPEG bytes."""
        generation_id = await self.start_nanobanana(prompt, image)
        result = await self.poll_until_finished(generation_id)
        return encode_jpeg(await self.download_result(result))

    async def run_effect(self, photo: bytes, template_id: int) -> bytes:
        generation_id = await self.start_effect(photo, template_id)
        result = await self.poll_until_finished(generation_id)
        return encode_jpeg(await self.download_result(result))

    async def run_video(self, photo: bytes, template_id: int) -> Path:
        generation_id = await self.start_video(photo, template_id)
        return await self.poll_download_video(generation_id)

    async def run_txt2video(self, prompt: str) -> Path:
        generation_id = await self.start_txt2video(prompt)
        return await self.poll_download_video(generation_id)

    async def run_video_enhance(self, video_path: str | Path, upscale_factor: int, type_prompt: str) -> Path:
        path = Path(video_path)
        generation_id = await self.start_video_enhance(
            path.read_bytes(), upscale_factor, type_prompt, filename=path.name,
        )
        return await self.poll_download_video(generation_id)

    # ------------------------------------------------------------------
    # Public API: effect templates
    # ------------------------------------------------------------------

    async def fetch_effects(self, lang: str = "en") -> list[EffectGroup]:
        """GET /api/generations/fotobudka/effects."""
        data = await self.gateway.request(f"/api/generations/fotobudka/effects?lang={lang}")
        try:
            return [
                EffectGroup(
                    id=int(group["id"]),
                    title=group.get("title"),
                    preview=group.get("preview"),
                    effects=[
                        EffectItem(id=int(e["id"]), preview=e["preview"], title=e.get("title"))
                        for e in group.get("effects") or []
                    ],
                )
                for group in data or []
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise DecodingError(f"Unexpected effects payload: {exc}") from exc

    async def fetch_video_templates(self, lang: str = "en") -> list[VideoTemplateGroup]:
        """GET /api/generations/fotobudka/video-templates."""
        data = await self.gateway.request(f"/api/generations/fotobudka/video-templates?lang={lang}")
        try:
            return [
                VideoTemplateGroup(
                    id=int(group["id"]),
                    title=group.get("title"),
                    videos=[
                        VideoTemplate(
                            id=int(v["id"]),
                            title=v["title"],
                            photo_preview=v["photo_preview"],
                            video_preview=v.get("video_preview"),
                            video_preview_short=v.get("video_preview_short"),
                            is_new=bool(v.get("is_new")),
                        )
                        for v in group.get("videos") or []
                    ],
                )
                for group in data or []
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise DecodingError(f"Unexpected video templates payload: {exc}") from exc
