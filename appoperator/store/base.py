from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, Optional

from appoperator.models import ApplicationResource, Event, ObjectRef, WatchEvent, WorkloadDescriptor


class ResourceStore(ABC):
    """Abstract base class for the store holding Applications and their workloads"""

    @abstractmethod
    async def check_resource_type(self) -> None:
        """
        Verify the Application resource type is registered

        Raises:
            NotFoundError: The resource type is unknown to the store
        """
        pass

    @abstractmethod
    async def list_resources(self) -> List[ApplicationResource]:
        """List every Application in every namespace"""
        pass

    @abstractmethod
    def watch(self) -> AsyncIterator[WatchEvent]:
        """
        Stream change notifications for Applications

        The stream starts with an ADDED notification for every existing object
        followed by one SYNCED marker, then delivers changes in resource
        version order per object.
        """
        pass

    @abstractmethod
    async def patch_status(
        self, ref: ObjectRef, status_doc: Dict, field_manager: str, force: bool = False
    ) -> ApplicationResource:
        """
        Apply a status document owned by field_manager

        Args:
            ref: Object to patch
            status_doc: Apply-patch body ({"apiVersion", "kind", "status"})
            field_manager: Owner of the fields in status_doc
            force: Take ownership of fields managed by someone else

        Returns:
            The patched object

        Raises:
            NotFoundError: The object does not exist
            ConflictError: Another manager owns the fields and force is False
        """
        pass

    @abstractmethod
    async def patch_finalizers(
        self, ref: ObjectRef, finalizers: List[str], expected: Optional[List[str]] = None
    ) -> ApplicationResource:
        """
        Replace the finalizer list of an object

        Args:
            ref: Object to patch
            finalizers: The new finalizer list
            expected: Finalizer list the object must still carry, None to skip the check

        Raises:
            NotFoundError: The object does not exist
            ConflictError: The finalizer list no longer matches expected
        """
        pass

    @abstractmethod
    async def create_workload(self, descriptor: WorkloadDescriptor) -> WorkloadDescriptor:
        """
        Raises:
            AlreadyExistsError: A workload with the same name exists
        """
        pass

    @abstractmethod
    async def get_workload(self, namespace: str, name: str) -> Optional[WorkloadDescriptor]:
        pass

    @abstractmethod
    async def delete_workload(self, namespace: str, name: str) -> None:
        """
        Raises:
            NotFoundError: No workload with that name exists
        """
        pass

    @abstractmethod
    async def publish_event(self, ref: ObjectRef, event: Event, reporter: str) -> None:
        pass

    async def close(self) -> None:
        """Release connections held by the store"""
        pass


def create_resource_store(store_type: str = "kubernetes", **kwargs) -> ResourceStore:
    """Factory function to create a resource store"""
    if store_type == "kubernetes":
        from appoperator.store.kubernetes import KubernetesResourceStore

        return KubernetesResourceStore(**kwargs)
    elif store_type == "memory":
        from appoperator.store.memory import InMemoryResourceStore

        return InMemoryResourceStore(**kwargs)
    else:
        raise ValueError(f"Unknown store type: {store_type}")
