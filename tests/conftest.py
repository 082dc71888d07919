import io
import os
import tempfile
from typing import Optional, Set

import pytest
import pytest_asyncio
from PIL import Image

# Set environment variables BEFORE importing urbanpulse modules; settings and
# the module-level engine are built at import time.
os.environ["JWT_SECRET"] = "test-secret-key-for-pytest-only-12345"
_TMP_DIR = tempfile.mkdtemp(prefix="urbanpulse-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/urbanpulse-test.db"
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["LOCAL_STORAGE_DIR"] = os.path.join(_TMP_DIR, "media")
os.environ["ADMIN_PASSCODE"] = "test-admin-passcode"
os.environ["ALLOWED_HOSTS"] = "*"

from urbanpulse.database import build_engine, build_session_factory, init_db  # noqa: E402
from urbanpulse.errors import ResolveFailed  # noqa: E402
from urbanpulse.geocode import GeocodeResolver  # noqa: E402
from urbanpulse.lifecycle import LifecycleController  # noqa: E402
from urbanpulse.live_views import LiveViewRegistry  # noqa: E402
from urbanpulse.media import MediaUploader  # noqa: E402
from urbanpulse.models import MediaAsset, Role, Viewer  # noqa: E402
from urbanpulse.pipeline import SubmissionPipeline  # noqa: E402
from urbanpulse.report_store import ReportStore  # noqa: E402
from urbanpulse.storage_s3 import StorageError  # noqa: E402


CITIZEN = Viewer(viewer_id="citizen-1", role=Role.CITIZEN)
OTHER_CITIZEN = Viewer(viewer_id="citizen-2", role=Role.CITIZEN)
ADMIN = Viewer(viewer_id="admin-1", role=Role.ADMINISTRATOR)


def make_png(size=(4, 4)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


def photo_asset() -> MediaAsset:
    return MediaAsset(data=make_png(), content_type="image/png", filename="pothole.png")


def audio_asset() -> MediaAsset:
    return MediaAsset(data=b"\x1aE\xdf\xa3fake-webm-bytes", content_type="audio/webm;codecs=opus", filename="clip.webm")


class FakeUploader(MediaUploader):
    """In-memory uploader; kinds listed in ``fail_kinds`` raise a storage error."""

    def __init__(self, fail_kinds: Optional[Set[str]] = None, timeout: float = 5.0):
        super().__init__(timeout)
        self.fail_kinds = set(fail_kinds or ())
        self.stored = {}

    async def _store(self, key: str, data: bytes, content_type: str) -> str:
        kind = key.split("/")[1]
        if kind in self.fail_kinds:
            raise StorageError(f"simulated {kind} failure")
        self.stored[key] = (data, content_type)
        return f"https://media.test/{key}"


class FakeResolver(GeocodeResolver):
    def __init__(self, address: Optional[str] = "12 Marina Road, Lagos", fail: bool = False):
        self.address = address
        self.fail = fail
        self.calls = []

    async def resolve(self, lat: float, lng: float) -> str:
        self.calls.append((lat, lng))
        if self.fail:
            raise ResolveFailed("geocoder unavailable")
        return self.address


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite://")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def store(engine):
    store = ReportStore(build_session_factory(engine))
    yield store
    store.close()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def pipeline(store, uploader, resolver):
    return SubmissionPipeline(store, uploader, resolver)


@pytest.fixture
def lifecycle(store, uploader):
    return LifecycleController(store, uploader)


@pytest.fixture
def registry(store):
    registry = LiveViewRegistry(store)
    yield registry
    registry.shutdown()


async def create_report(store: ReportStore, owner_id: str = CITIZEN.viewer_id, title: str = "Pothole", **extra):
    fields = {
        "owner_id": owner_id,
        "title": title,
        "description": "deep hole",
        "category": "Roads",
    }
    fields.update(extra)
    return await store.create(fields)
