from fastapi import APIRouter

from app.api.dependencies import RegistryDep
from app.models import schemas
from app.services.service_registry import ServiceDescriptor

router = APIRouter()


def _service_out(descriptor: ServiceDescriptor) -> schemas.ServiceOut:
    return schemas.ServiceOut(**descriptor.to_public_dict())


@router.get("", response_model=schemas.ServicesOut)
def list_services(registry: RegistryDep):
    """Enabled downstream services, in registration order."""
    services = [_service_out(s) for s in registry.get_all_enabled()]
    return schemas.ServicesOut(services=services, count=len(services))


@router.get("/{service_id}", response_model=schemas.ServiceOut)
def get_service(service_id: str, registry: RegistryDep):
    return _service_out(registry.get(service_id))
