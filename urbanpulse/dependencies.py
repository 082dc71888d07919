"""Common FastAPI dependencies."""

from dataclasses import dataclass
from functools import lru_cache
import logging

from .database import async_session_factory
from .geocode import GeocodeResolver, build_resolver
from .lifecycle import LifecycleController
from .live_views import LiveViewRegistry
from .media import MediaUploader, build_uploader
from .pipeline import SubmissionPipeline
from .report_store import ReportFilter, ReportStore
from .models import Viewer

logger = logging.getLogger("urbanpulse.dependencies")


@dataclass
class ReportServices:
    store: ReportStore
    uploader: MediaUploader
    resolver: GeocodeResolver
    pipeline: SubmissionPipeline
    lifecycle: LifecycleController
    live_views: LiveViewRegistry

    @classmethod
    def build(cls, store: ReportStore, uploader: MediaUploader, resolver: GeocodeResolver) -> "ReportServices":
        return cls(
            store=store,
            uploader=uploader,
            resolver=resolver,
            pipeline=SubmissionPipeline(store, uploader, resolver),
            lifecycle=LifecycleController(store, uploader),
            live_views=LiveViewRegistry(store),
        )

    async def aclose(self) -> None:
        self.live_views.shutdown()
        self.store.close()
        await self.resolver.aclose()


@lru_cache()
def get_services() -> ReportServices:
    """Process-wide services; tests replace this via ``app.dependency_overrides``."""
    services = ReportServices.build(
        ReportStore(async_session_factory),
        build_uploader(),
        build_resolver(),
    )
    logger.info("Report services initialized")
    return services


def visibility_filter(viewer: Viewer) -> ReportFilter:
    if viewer.is_admin:
        return ReportFilter.everything()
    return ReportFilter.owned_by(viewer.viewer_id)


__all__ = ["ReportServices", "get_services", "visibility_filter"]
