import io, base64, logging
from typing import Awaitable, Callable, Optional, Tuple

from PIL import Image

from .fallback import attempt_chain
from .models import MediaAsset, MediaKind, Scene
from .prompts import IMAGE_STYLE_SUFFIX, VIDEO_STYLE_SUFFIX
from .replicate_client import create_and_wait_image, create_and_wait_video, fetch_bytes
from .settings import IMAGE_MODEL_HIGH, IMAGE_MODEL_LOW, VIDEO_MODEL

logger = logging.getLogger(__name__)

DEFAULT_MIME = {MediaKind.IMAGE: "image/png", MediaKind.VIDEO: "video/mp4"}

def _normalize_image(data: bytes) -> Tuple[bytes, Optional[str]]:
    """Convert WebP output to PNG so every stored image is broadly embeddable."""
    try:
        with Image.open(io.BytesIO(data)) as pil_img:
            if pil_img.format != "WEBP":
                return data, Image.MIME.get(pil_img.format)
            if pil_img.mode in ("RGBA", "LA"):
                # Flatten transparency onto a white background
                background = Image.new("RGB", pil_img.size, (255, 255, 255))
                if pil_img.mode == "LA":
                    pil_img = pil_img.convert("RGBA")
                background.paste(pil_img, mask=pil_img.split()[-1])
                pil_img = background
            elif pil_img.mode != "RGB":
                pil_img = pil_img.convert("RGB")
            png_buffer = io.BytesIO()
            pil_img.save(png_buffer, format="PNG")
            return png_buffer.getvalue(), "image/png"
    except Exception as e:
        logger.warning(f"Image conversion failed: {e}, storing as-is")
        return data, None

def to_data_url(content: bytes, kind: MediaKind, content_type: str = "") -> MediaAsset:
    """The single conversion into a storage-safe payload, for images and videos alike."""
    mime = content_type.split(";")[0].strip().lower()
    if kind is MediaKind.IMAGE:
        content, detected = _normalize_image(content)
        mime = detected or mime
    if not mime.startswith(f"{kind.value}/"):
        mime = DEFAULT_MIME[kind]
    encoded = base64.b64encode(content).decode("ascii")
    return MediaAsset(kind=kind, data_url=f"data:{mime};base64,{encoded}")


class MediaPipeline:
    """Acquires the visual for a scene: video first when asked for, then high and low tier images."""

    def __init__(
        self,
        generate_image: Callable[[str, str], Awaitable[str]] = create_and_wait_image,
        generate_video: Callable[[str, str], Awaitable[str]] = create_and_wait_video,
        fetch: Callable[[str], Awaitable[Tuple[bytes, str]]] = fetch_bytes,
        image_model_high: str = IMAGE_MODEL_HIGH,
        image_model_low: str = IMAGE_MODEL_LOW,
        video_model: str = VIDEO_MODEL,
    ):
        self.generate_image = generate_image
        self.generate_video = generate_video
        self.fetch = fetch
        self.image_model_high = image_model_high
        self.image_model_low = image_model_low
        self.video_model = video_model

    async def _video(self, prompt: str) -> MediaAsset:
        url = await self.generate_video(prompt + VIDEO_STYLE_SUFFIX, self.video_model)
        content, content_type = await self.fetch(url)
        return to_data_url(content, MediaKind.VIDEO, content_type)

    async def _image(self, prompt: str, model: str) -> MediaAsset:
        url = await self.generate_image(prompt + IMAGE_STYLE_SUFFIX, model)
        content, content_type = await self.fetch(url)
        return to_data_url(content, MediaKind.IMAGE, content_type)

    def strategies(self, prompt: str, kind: MediaKind):
        chain = []
        if kind is MediaKind.VIDEO:
            chain.append(("video", lambda: self._video(prompt)))
        chain.append(("image-high", lambda: self._image(prompt, self.image_model_high)))
        chain.append(("image-low", lambda: self._image(prompt, self.image_model_low)))
        return chain

    async def acquire(self, prompt: str, kind: MediaKind) -> Optional[MediaAsset]:
        """Returns the asset, or None when every tier failed ("unavailable")."""
        return await attempt_chain(self.strategies(prompt, kind), label=f"{kind.value} acquisition")

    async def acquire_for_scene(self, scene: Scene) -> Optional[MediaAsset]:
        logger.info(f"Acquiring {scene.media_type.value} for scene {scene.id}")
        return await self.acquire(scene.image_prompt or scene.text, scene.media_type)
