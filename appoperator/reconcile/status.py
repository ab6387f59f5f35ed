import logging

from appoperator.exceptions import store_phase
from appoperator.models import ApplicationResource, ApplicationStatus
from appoperator.store.base import ResourceStore

logger = logging.getLogger(__name__)


class StatusWriter:
    """Writes Application status with a force-applied patch owned by field_manager"""

    def __init__(self, store: ResourceStore, api_version: str, kind: str, field_manager: str):
        self.store = store
        self.api_version = api_version
        self.kind = kind
        self.field_manager = field_manager

    def status_document(self, status: ApplicationStatus) -> dict:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "status": status.model_dump(mode="json"),
        }

    async def write(self, resource: ApplicationResource, status: ApplicationStatus) -> ApplicationResource:
        with store_phase("patch_status"):
            patched = await self.store.patch_status(
                resource.object_ref(),
                self.status_document(status),
                field_manager=self.field_manager,
                force=True,
            )
        logger.debug(f"Status of {resource.object_ref()} is now {status.model_dump(mode='json')}")
        return patched
