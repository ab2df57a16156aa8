"""
Image resizer test configuration.

Fixtures:
- storage / settings: a throwaway cache root and a settings snapshot
- origin: an in-process fake origin server behind httpx.MockTransport
- orchestrator: the full component graph wired to the fake origin
- client: FastAPI TestClient for end-to-end requests
"""

import asyncio
import sys
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Make the backend packages importable without installing
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from image_resizer.app import create_app
from image_resizer.config import Settings
from image_resizer.orchestrator import RequestOrchestrator

TENANT_HOST = "img.example.com"
ORIGIN_HOST = "origin.example.com"


# ============================================
# Image helpers
# ============================================

def make_image(size: Tuple[int, int] = (400, 200), fmt: str = "PNG", color=(200, 40, 40)) -> bytes:
    """Encode a solid-colour test image."""
    img = Image.new("RGB", size, color)
    out = BytesIO()
    img.save(out, format=fmt)
    return out.getvalue()


def make_animated_gif(size: Tuple[int, int] = (120, 60), frames: int = 3) -> bytes:
    colors = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (255, 255, 0)]
    images = [Image.new("RGB", size, colors[i % len(colors)]) for i in range(frames)]
    out = BytesIO()
    images[0].save(out, format="GIF", save_all=True, append_images=images[1:], duration=80, loop=0)
    return out.getvalue()


def image_size(data: bytes) -> Tuple[int, int]:
    with Image.open(BytesIO(data)) as img:
        return img.size


# ============================================
# Fake origin
# ============================================

class FakeOrigin:
    """
    Serves `files` by path; anything else is a 404.

    Records every request so tests can count origin pulls and inspect
    forwarded headers.
    """

    def __init__(self, delay: float = 0.0):
        self.files: Dict[str, bytes] = {}
        self.requests: List[httpx.Request] = []
        self.delay = delay
        self.status_override: Optional[int] = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.status_override is not None:
            return httpx.Response(self.status_override)
        body = self.files.get(request.url.path.lstrip("/"))
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, content=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def pulls(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == "/" + path)


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def storage(tmp_path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def settings(storage) -> Settings:
    return Settings(hosts={TENANT_HOST: ORIGIN_HOST}, storage=storage, ttl=60)


@pytest.fixture
def origin() -> FakeOrigin:
    fake = FakeOrigin()
    fake.files["photo.jpg"] = make_image((400, 200), "JPEG")
    fake.files["logo.png"] = make_image((200, 100), "PNG")
    fake.files["anim.gif"] = make_animated_gif()
    return fake


@pytest.fixture
def orchestrator(settings, origin) -> RequestOrchestrator:
    return RequestOrchestrator.from_settings(settings, http_client=origin.client())


@pytest.fixture
def client(settings, origin):
    app = create_app(settings, http_client=origin.client())
    with TestClient(app, base_url=f"http://{TENANT_HOST}") as test_client:
        yield test_client
