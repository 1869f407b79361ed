"""
Pydantic models for the setup run and the generated docker-compose document.

The deployment descriptor is built from these models and serialized by
compose.py, so values never pass through raw text interpolation.
"""

from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_INSTALL_DIR = '/opt/beget/n8n'
DEFAULT_TIMEZONE = 'Europe/Moscow'
DEFAULT_DOCKER_GID = 999

# Mandatory services, in the order they appear in docker-compose.yml
MANDATORY_SERVICES = ('traefik', 'postgres', 'redis', 'n8n', 'n8n-worker')
TOOLS_SERVICE = 'n8n-tools'
BOT_SERVICE = 'n8n-bot'


class RenderContext(BaseModel):
    """Everything the descriptor renderer is allowed to see."""
    model_config = ConfigDict(frozen=True)

    domain: str = ''
    timezone: str = DEFAULT_TIMEZONE
    acme_email: str = ''
    docker_gid: int = Field(DEFAULT_DOCKER_GID, ge=0)
    include_tools_service: bool = True
    include_bot_service: bool = True
    install_dir: str = DEFAULT_INSTALL_DIR

    @field_validator('domain', 'timezone', 'acme_email')
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()

    @field_validator('install_dir')
    @classmethod
    def validate_install_dir(cls, v: str) -> str:
        """Mountpoints must be absolute host paths."""
        if not v.startswith('/'):
            raise ValueError(f"install_dir must be an absolute path, got '{v}'")
        return v.rstrip('/') or '/'


class FragmentRef(BaseModel):
    """Reference to a shared top-level list (a YAML anchor)."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., pattern=r'^[a-z][a-z0-9-]*$')


class BuildSpec(BaseModel):
    context: str = '.'
    dockerfile: str
    args: Optional[dict[str, str]] = None


class HealthCheck(BaseModel):
    test: list[str] = Field(..., min_length=1)
    interval: str = '5s'
    timeout: str = '5s'
    retries: int = Field(10, ge=1)


class DependsOnCondition(BaseModel):
    condition: str = 'service_healthy'


class ServiceSpec(BaseModel):
    """A single docker-compose service definition."""
    image: Optional[str] = None
    build: Optional[BuildSpec] = None
    container_name: str
    restart: str = 'always'
    user: Optional[str] = None
    command: Optional[Union[str, list[str]]] = None
    environment: Optional[Union[FragmentRef, list[str]]] = None
    volumes: Optional[Union[FragmentRef, list[str]]] = None
    group_add: Optional[list[str]] = None
    depends_on: Optional[Union[list[str], dict[str, DependsOnCondition]]] = None
    labels: Optional[list[str]] = None
    ports: Optional[list[str]] = None
    healthcheck: Optional[HealthCheck] = None

    @model_validator(mode='after')
    def validate_image_or_build(self) -> 'ServiceSpec':
        """A service runs either a prebuilt image or a local build."""
        if (self.image is None) == (self.build is None):
            raise ValueError(
                f"Service {self.container_name} must set exactly one of image/build"
            )
        return self


class VolumeSpec(BaseModel):
    """Named volume backed by the local-persist driver."""
    driver: str = 'local-persist'
    mountpoint: str

    def to_compose(self) -> dict:
        return {'driver': self.driver, 'driver_opts': {'mountpoint': self.mountpoint}}


class DeploymentDescriptor(BaseModel):
    """The full docker-compose document.

    Mandatory services are required fields; optional services are either
    None (absent) or a complete ServiceSpec (present).
    """
    volumes: dict[str, VolumeSpec]
    fragments: dict[str, list[str]]

    traefik: ServiceSpec
    postgres: ServiceSpec
    redis: ServiceSpec
    n8n: ServiceSpec
    n8n_worker: ServiceSpec

    tools: Optional[ServiceSpec] = None
    bot: Optional[ServiceSpec] = None

    @model_validator(mode='after')
    def validate_fragment_refs(self) -> 'DeploymentDescriptor':
        """Every fragment a service references must be defined."""
        errors = []
        for name, service in self.services().items():
            for field in (service.environment, service.volumes):
                if isinstance(field, FragmentRef) and field.name not in self.fragments:
                    errors.append(f"Service {name} references unknown fragment: {field.name}")
        if errors:
            raise ValueError('\n'.join(errors))
        return self

    def services(self) -> dict[str, ServiceSpec]:
        """Services in document order, optional ones only when present."""
        services = {
            'traefik': self.traefik,
            'postgres': self.postgres,
            'redis': self.redis,
            'n8n': self.n8n,
            'n8n-worker': self.n8n_worker,
        }
        if self.tools is not None:
            services[TOOLS_SERVICE] = self.tools
        if self.bot is not None:
            services[BOT_SERVICE] = self.bot
        return services


class SetupOptions(BaseModel):
    """Validated command-line options for a setup run."""
    install_dir: Path = Path(DEFAULT_INSTALL_DIR)
    install_bot: bool = True
    install_tools: bool = True
    setup_proxy: bool = True
    timezone: str = ''
    domain: str = ''
    dry_run: bool = False
    health_url: str = 'http://127.0.0.1:5678/healthz'
    health_attempts: int = Field(12, ge=1)
    health_interval_s: float = Field(5, ge=0)

    @field_validator('timezone', 'domain')
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()
