"""
docker-compose.yml builder for the customized n8n stack.

build_descriptor() turns a RenderContext into a typed DeploymentDescriptor,
render() serializes it with ruamel.yaml. The n8n and n8n-worker services share
their environment and volume lists through two named fragments, emitted as
YAML anchors (&n8n-env, &n8n-volumes) so the two services cannot drift apart.

Every ${VAR:-default} reference keeps its default visible in the output.
"""

from io import StringIO

from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap, CommentedSeq
from ruamel.yaml.scalarstring import DoubleQuotedScalarString

from models import (
    BuildSpec,
    DependsOnCondition,
    DeploymentDescriptor,
    FragmentRef,
    HealthCheck,
    RenderContext,
    ServiceSpec,
    VolumeSpec,
)

TRAEFIK_IMAGE = 'traefik:3.6.5'
POSTGRES_IMAGE = 'postgres:16'
REDIS_IMAGE = 'redis:7-alpine'

N8N_ENV_FRAGMENT = 'n8n-env'
N8N_VOLUMES_FRAGMENT = 'n8n-volumes'

CERT_RESOLVER = 'mytlschallenge'
SHIM_PATH = '/opt/shims:/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin'

# (shim name, mount target) pairs bind-mounted read-only into n8n containers
SHIM_MOUNTS = [
    ('python', '/usr/bin/python'),
    ('python3', '/usr/bin/python3'),
    ('ffmpeg', '/usr/bin/ffmpeg'),
    ('yt-dlp', '/usr/bin/yt-dlp'),
]

# Compose keys whose string values must stay quoted (YAML 1.1 parsers read
# "80:80" as a base-60 integer)
QUOTED_KEYS = {'ports', 'user', 'group_add'}


def docker_gid_ref(ctx: RenderContext) -> str:
    return f'${{DOCKER_GID:-{ctx.docker_gid}}}'


def build_n8n_env(ctx: RenderContext) -> list[str]:
    """Environment shared by the n8n main and worker containers."""
    return [
        # Database
        'DB_TYPE=postgresdb',
        'DB_POSTGRESDB_HOST=postgres',
        'DB_POSTGRESDB_PORT=5432',
        'DB_POSTGRESDB_DATABASE=${DB_POSTGRESDB_DATABASE:-n8n}',
        'DB_POSTGRESDB_USER=${DB_POSTGRESDB_USER:-user}',
        'DB_POSTGRESDB_PASSWORD=${DB_POSTGRESDB_PASSWORD}',
        # n8n core
        'N8N_ENCRYPTION_KEY=${N8N_ENCRYPTION_KEY}',
        f'N8N_HOST=${{N8N_HOST:-{ctx.domain}}}',
        'N8N_PORT=5678',
        'N8N_PROTOCOL=https',
        'N8N_PROXY_HOPS=${N8N_PROXY_HOPS:-1}',
        'N8N_EXPRESS_TRUST_PROXY=${N8N_EXPRESS_TRUST_PROXY:-true}',
        'N8N_TRUSTED_PROXIES=${N8N_TRUSTED_PROXIES:-*}',
        f'WEBHOOK_URL=${{WEBHOOK_URL:-https://{ctx.domain}/}}',
        f'GENERIC_TIMEZONE=${{GENERIC_TIMEZONE:-{ctx.timezone}}}',
        'NODE_ENV=production',
        'N8N_ENFORCE_SETTINGS_FILE_PERMISSIONS=true',
        'N8N_RUNNERS_ENABLED=${N8N_RUNNERS_ENABLED:-true}',
        'N8N_PERSONALIZATION_ENABLED=false',
        'N8N_BLOCK_ENV_ACCESS_IN_NODE=true',
        'N8N_GIT_NODE_DISABLE_BARE_REPOS=true',
        # Limits and timeouts
        'N8N_PAYLOAD_SIZE_MAX=${N8N_PAYLOAD_SIZE_MAX:-512}',
        'N8N_FORMDATA_FILE_SIZE_MAX=${N8N_FORMDATA_FILE_SIZE_MAX:-2048}',
        'N8N_RUNNERS_TASK_TIMEOUT=${N8N_RUNNERS_TASK_TIMEOUT:-1800}',
        'EXECUTIONS_TIMEOUT=${EXECUTIONS_TIMEOUT:--1}',
        'EXECUTIONS_TIMEOUT_MAX=${EXECUTIONS_TIMEOUT_MAX:-14400}',
        # File and binary data
        'N8N_BINARY_DATA_MODE=${N8N_BINARY_DATA_MODE:-filesystem}',
        'N8N_DEFAULT_BINARY_DATA_MODE=${N8N_DEFAULT_BINARY_DATA_MODE:-filesystem}',
        'N8N_RESTRICT_FILE_ACCESS_TO=/data',
        # Community packages and nodes
        'N8N_COMMUNITY_PACKAGES_ENABLED=true',
        'NODES_EXCLUDE=${NODES_EXCLUDE:-[]}',
        # Queue (Redis)
        'EXECUTIONS_MODE=${EXECUTIONS_MODE:-regular}',
        'QUEUE_BULL_REDIS_HOST=${QUEUE_BULL_REDIS_HOST:-redis}',
        'QUEUE_BULL_REDIS_PORT=${QUEUE_BULL_REDIS_PORT:-6379}',
        'QUEUE_HEALTH_CHECK_ACTIVE=true',
        f'PATH={SHIM_PATH}',
        # Proxy (empty values are ignored by n8n)
        'HTTP_PROXY=${PROXY_URL:-}',
        'HTTPS_PROXY=${PROXY_URL:-}',
        'NO_PROXY=${NO_PROXY:-localhost,127.0.0.1,postgres,redis}',
    ]


def build_n8n_volumes(ctx: RenderContext) -> list[str]:
    """Volume mounts shared by the n8n main and worker containers."""
    root = ctx.install_dir
    volumes = [
        '/var/run/docker.sock:/var/run/docker.sock',
        '/usr/bin/docker:/usr/bin/docker:ro',
        'n8n_storage:/home/node/.n8n',
        './data:/data',
        f'./backup_n8n.sh:{root}/backup_n8n.sh',
        f'./update_n8n.sh:{root}/update_n8n.sh',
        f'./backups:{root}/backups',
        f'./.env:{root}/.env',
        './healthcheck.js:/healthcheck.js',
    ]
    volumes.extend(f'./shims/{name}:{target}:ro' for name, target in SHIM_MOUNTS)
    volumes.append('./shims:/opt/shims:ro')
    return volumes


def build_traefik(ctx: RenderContext) -> ServiceSpec:
    resolver = f'--certificatesresolvers.{CERT_RESOLVER}.acme'
    return ServiceSpec(
        image=TRAEFIK_IMAGE,
        container_name='n8n-traefik',
        command=[
            '--api=true',
            '--api.insecure=true',
            '--providers.docker=true',
            '--providers.docker.exposedbydefault=false',
            '--entrypoints.web.address=:80',
            '--entrypoints.web.http.redirections.entryPoint.to=websecure',
            '--entrypoints.web.http.redirections.entrypoint.scheme=https',
            '--entrypoints.websecure.address=:443',
            f'{resolver}.tlschallenge=true',
            f'{resolver}.email={ctx.acme_email}',
            f'{resolver}.storage=/letsencrypt/acme.json',
        ],
        ports=['80:80', '443:443'],
        volumes=[
            'traefik_data:/letsencrypt',
            '/var/run/docker.sock:/var/run/docker.sock:ro',
        ],
    )


def build_postgres(ctx: RenderContext) -> ServiceSpec:
    return ServiceSpec(
        image=POSTGRES_IMAGE,
        container_name='n8n-postgres',
        environment=[
            'POSTGRES_USER=${POSTGRES_USER:-root}',
            'POSTGRES_PASSWORD=${POSTGRES_PASSWORD}',
            'POSTGRES_DB=${POSTGRES_DB:-n8n}',
            'POSTGRES_NON_ROOT_USER=${POSTGRES_NON_ROOT_USER:-user}',
            'POSTGRES_NON_ROOT_PASSWORD=${POSTGRES_NON_ROOT_PASSWORD:-${DB_POSTGRESDB_PASSWORD}}',
        ],
        volumes=[
            'db_storage:/var/lib/postgresql/data',
            './init-data.sh:/docker-entrypoint-initdb.d/init-data.sh',
        ],
        ports=['127.0.0.1:5432:5432'],
        healthcheck=HealthCheck(test=[
            'CMD-SHELL',
            'pg_isready -h localhost -U ${POSTGRES_USER:-root} -d ${POSTGRES_DB:-n8n}',
        ]),
    )


def build_redis(ctx: RenderContext) -> ServiceSpec:
    return ServiceSpec(
        image=REDIS_IMAGE,
        container_name='n8n-redis',
        volumes=['redis_storage:/data'],
        healthcheck=HealthCheck(test=['CMD', 'redis-cli', 'ping']),
    )


def build_n8n_labels(ctx: RenderContext) -> list[str]:
    """Traefik routing and security-header labels for the main n8n service."""
    router = 'traefik.http.routers.n8n'
    headers = 'traefik.http.middlewares.n8n.headers'
    return [
        'traefik.enable=true',
        f'{router}.rule=Host(`{ctx.domain}`)',
        f'{router}.tls=true',
        f'{router}.entrypoints=web,websecure',
        f'{router}.tls.certresolver={CERT_RESOLVER}',
        f'{headers}.SSLRedirect=true',
        f'{headers}.STSSeconds=315360000',
        f'{headers}.browserXSSFilter=true',
        f'{headers}.contentTypeNosniff=true',
        f'{headers}.forceSTSHeader=true',
        f'{headers}.SSLHost={ctx.domain}',
        f'{headers}.STSIncludeSubdomains=true',
        f'{headers}.STSPreload=true',
        f'{router}.middlewares=n8n@docker',
        'traefik.http.services.n8n.loadbalancer.server.port=5678',
    ]


def _n8n_build(ctx: RenderContext) -> BuildSpec:
    return BuildSpec(
        context='.',
        dockerfile='Dockerfile.n8n',
        args={'DOCKER_GID': docker_gid_ref(ctx)},
    )


def build_n8n(ctx: RenderContext) -> ServiceSpec:
    return ServiceSpec(
        build=_n8n_build(ctx),
        container_name='n8n-app',
        user='0:0',
        environment=FragmentRef(name=N8N_ENV_FRAGMENT),
        volumes=FragmentRef(name=N8N_VOLUMES_FRAGMENT),
        group_add=[docker_gid_ref(ctx)],
        depends_on={
            'redis': DependsOnCondition(),
            'postgres': DependsOnCondition(),
        },
        labels=build_n8n_labels(ctx),
        ports=['127.0.0.1:5678:5678'],
        healthcheck=HealthCheck(test=['CMD', 'node', '/healthcheck.js']),
    )


def build_n8n_worker(ctx: RenderContext) -> ServiceSpec:
    return ServiceSpec(
        build=_n8n_build(ctx),
        container_name='n8n-worker',
        user='0:0',
        command='worker',
        environment=FragmentRef(name=N8N_ENV_FRAGMENT),
        volumes=FragmentRef(name=N8N_VOLUMES_FRAGMENT),
        group_add=[docker_gid_ref(ctx)],
        depends_on=['n8n'],
        healthcheck=HealthCheck(test=[
            'CMD-SHELL',
            'wget -q -O - http://localhost:5678/healthz || exit 1',
        ]),
    )


def build_tools(ctx: RenderContext) -> ServiceSpec:
    """Utility container with docker-cli, git, jq and zip."""
    return ServiceSpec(
        build=BuildSpec(context='.', dockerfile='Dockerfile.tools'),
        container_name='n8n-tools',
        command=['sh', '-lc', 'sleep infinity'],
        volumes=[
            '/var/run/docker.sock:/var/run/docker.sock',
            './data:/data',
        ],
    )


def build_bot(ctx: RenderContext) -> ServiceSpec:
    """Telegram control bot. Sees the host's compose project through docker.sock."""
    root = ctx.install_dir
    return ServiceSpec(
        build=BuildSpec(context='./bot', dockerfile='Dockerfile'),
        container_name='n8n-bot',
        environment=[
            'TG_BOT_TOKEN=${TG_BOT_TOKEN}',
            'TG_USER_ID=${TG_USER_ID}',
            f'COMPOSE_FILE={root}/docker-compose.yml',
            'COMPOSE_PROJECT_NAME=n8n',
        ],
        volumes=[
            '/var/run/docker.sock:/var/run/docker.sock',
            f'./update_n8n.sh:{root}/update_n8n.sh',
            f'./backup_n8n.sh:{root}/backup_n8n.sh',
            f'./backups:{root}/backups',
            f'./docker-compose.yml:{root}/docker-compose.yml:ro',
            f'./logs:{root}/logs',
            f'./.env:{root}/.env',
            '/usr/libexec/docker/cli-plugins/docker-compose:/root/.docker/cli-plugins/docker-compose:ro',
        ],
        labels=['traefik.enable=false'],
    )


def build_volumes(ctx: RenderContext) -> dict[str, VolumeSpec]:
    names = ['traefik_data', 'n8n_storage', 'db_storage', 'redis_storage']
    return {name: VolumeSpec(mountpoint=f'{ctx.install_dir}/{name}') for name in names}


def build_descriptor(ctx: RenderContext) -> DeploymentDescriptor:
    """Assemble the full deployment descriptor for a render context."""
    return DeploymentDescriptor(
        volumes=build_volumes(ctx),
        fragments={
            N8N_ENV_FRAGMENT: build_n8n_env(ctx),
            N8N_VOLUMES_FRAGMENT: build_n8n_volumes(ctx),
        },
        traefik=build_traefik(ctx),
        postgres=build_postgres(ctx),
        redis=build_redis(ctx),
        n8n=build_n8n(ctx),
        n8n_worker=build_n8n_worker(ctx),
        tools=build_tools(ctx) if ctx.include_tools_service else None,
        bot=build_bot(ctx) if ctx.include_bot_service else None,
    )


def _to_commented(value, key: str = ''):
    """Convert plain dicts/lists into ruamel nodes, quoting where needed."""
    if isinstance(value, dict):
        node = CommentedMap()
        for k, v in value.items():
            node[k] = _to_commented(v, k)
        return node
    if isinstance(value, list):
        node = CommentedSeq(_to_commented(item, key) for item in value)
        if key == 'test':
            node.fa.set_flow_style()
        return node
    if isinstance(value, str) and key in QUOTED_KEYS:
        return DoubleQuotedScalarString(value)
    return value


def descriptor_to_document(descriptor: DeploymentDescriptor) -> CommentedMap:
    """Build the ruamel document tree, wiring fragment references to anchors."""
    doc = CommentedMap()
    doc['volumes'] = _to_commented(
        {name: volume.to_compose() for name, volume in descriptor.volumes.items()}
    )

    anchors = {}
    for name, items in descriptor.fragments.items():
        seq = CommentedSeq(items)
        seq.yaml_set_anchor(name, always_dump=True)
        anchors[name] = seq
        doc[f'x-{name}'] = seq

    services = CommentedMap()
    for name, spec in descriptor.services().items():
        node = _to_commented(spec.model_dump(exclude_none=True))
        for field in ('environment', 'volumes'):
            ref = getattr(spec, field)
            if isinstance(ref, FragmentRef):
                node[field] = anchors[ref.name]
        services[name] = node
    doc['services'] = services
    return doc


def _yaml_dumper() -> YAML:
    yaml = YAML()
    yaml.indent(mapping=2, sequence=4, offset=2)
    yaml.width = 4096
    yaml.explicit_start = True
    return yaml


def serialize_descriptor(descriptor: DeploymentDescriptor) -> str:
    stream = StringIO()
    _yaml_dumper().dump(descriptor_to_document(descriptor), stream)
    return stream.getvalue()


def render(ctx: RenderContext) -> str:
    """Render docker-compose.yml text for a context. Pure function."""
    return serialize_descriptor(build_descriptor(ctx))
