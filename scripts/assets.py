"""
Static files written next to docker-compose.yml.

Dockerfiles, PATH shims, backup/update scripts, the container healthcheck,
the Postgres init script and the Telegram bot scaffold are all rendered from
Jinja2 templates in templates/.
"""

import os
from pathlib import Path
from typing import Optional

from jinja2 import FileSystemLoader, StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from models import DEFAULT_DOCKER_GID, DEFAULT_INSTALL_DIR

TEMPLATES_DIR = Path(__file__).parent.parent / 'templates'

N8N_BASE_IMAGE = 'docker.n8n.io/n8nio/n8n:latest'
APP_CONTAINER = 'n8n-app'

N8N_APT_PACKAGES = [
    'ffmpeg',
    'libfontconfig1',
    'libfreetype6',
    'fontconfig',
    'locales',
    'git',
    'build-essential',
    'python3',
    'python3-pip',
    'python3-dev',
    'curl',
    'wget',
    'jq',
]
N8N_PIP_PACKAGES = ['yt-dlp']

TOOLS_APK_PACKAGES = ['docker-cli', 'bash', 'curl', 'jq', 'zip', 'unzip']

# Shim name -> real binary inside the n8n image
SHIMS = {
    'ffmpeg': '/usr/bin/ffmpeg',
    'fc-scan': '/usr/bin/fc-scan',
    'python': '/usr/bin/python3',
    'python3': '/usr/bin/python3',
    'yt-dlp': '/usr/local/bin/yt-dlp',
}

KEEP_BACKUPS = 7
UPDATE_BUILD_SERVICES = ['n8n', 'n8n-worker']

BOT_FILES = [
    ('bot/Dockerfile.j2', 'Dockerfile'),
    ('bot/package.json.j2', 'package.json'),
    ('bot/bot.js.j2', 'bot.js'),
]

EXECUTABLE = 0o755

REQUIRED_TEMPLATES = [
    'Dockerfile.n8n.j2',
    'Dockerfile.tools.j2',
    'shim.sh.j2',
    'backup_n8n.sh.j2',
    'update_n8n.sh.j2',
    'healthcheck.js.j2',
    'init-data.sh.j2',
] + [template_name for template_name, _ in BOT_FILES]


def _environment(templates_dir: Optional[Path] = None) -> SandboxedEnvironment:
    return SandboxedEnvironment(
        loader=FileSystemLoader(templates_dir or TEMPLATES_DIR),
        keep_trailing_newline=True,
        undefined=StrictUndefined,
    )


def render_template(template_name: str, templates_dir: Optional[Path] = None, **context) -> str:
    """Render one template from the templates directory.

    Raises:
        jinja2.TemplateError: If the template is missing or fails to render
    """
    return _environment(templates_dir).get_template(template_name).render(**context)


def missing_templates(templates_dir: Optional[Path] = None) -> list[str]:
    """Template files not found on disk, empty when all are present."""
    templates_dir = templates_dir or TEMPLATES_DIR
    return [name for name in REQUIRED_TEMPLATES if not (templates_dir / name).is_file()]


def write_file(path: Path, content: str, mode: Optional[int] = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding='utf-8')
    if mode is not None:
        os.chmod(path, mode)
    return path


def write_dockerfiles(root: Path, docker_gid: int = DEFAULT_DOCKER_GID,
                      include_tools: bool = True) -> list[Path]:
    """Write Dockerfile.n8n and, when the tools service is enabled, Dockerfile.tools."""
    written = [write_file(
        root / 'Dockerfile.n8n',
        render_template(
            'Dockerfile.n8n.j2',
            base_image=N8N_BASE_IMAGE,
            docker_gid=docker_gid,
            apt_packages=N8N_APT_PACKAGES,
            pip_packages=N8N_PIP_PACKAGES,
        ),
    )]
    if include_tools:
        written.append(write_file(
            root / 'Dockerfile.tools',
            render_template('Dockerfile.tools.j2', apk_packages=TOOLS_APK_PACKAGES),
        ))
    return written


def write_shims(root: Path) -> list[Path]:
    """Write executable forwarding scripts into shims/."""
    shims_dir = root / 'shims'
    return [
        write_file(shims_dir / name, render_template('shim.sh.j2', target=target), EXECUTABLE)
        for name, target in SHIMS.items()
    ]


def write_utility_scripts(root: Path, install_dir: str = DEFAULT_INSTALL_DIR) -> list[Path]:
    """Write backup_n8n.sh and update_n8n.sh."""
    backup = render_template(
        'backup_n8n.sh.j2', install_dir=install_dir, keep_backups=KEEP_BACKUPS,
    )
    update = render_template(
        'update_n8n.sh.j2', install_dir=install_dir, build_services=UPDATE_BUILD_SERVICES,
    )
    return [
        write_file(root / 'backup_n8n.sh', backup, EXECUTABLE),
        write_file(root / 'update_n8n.sh', update, EXECUTABLE),
    ]


def write_support_files(root: Path) -> list[Path]:
    """Create healthcheck.js and init-data.sh if they do not exist yet.

    Existing files belong to the Beget installation and are left alone.

    Returns:
        List of files that were created
    """
    created = []
    healthcheck = root / 'healthcheck.js'
    if not healthcheck.exists():
        created.append(write_file(
            healthcheck, render_template('healthcheck.js.j2', port=5678, path='/healthz'),
        ))
    init_data = root / 'init-data.sh'
    if not init_data.exists():
        created.append(write_file(init_data, render_template('init-data.sh.j2'), EXECUTABLE))
    return created


def write_bot_scaffold(root: Path, install_dir: str = DEFAULT_INSTALL_DIR) -> bool:
    """Create the Telegram bot sources unless bot/bot.js already exists.

    Returns:
        True if the scaffold was written, False if existing code was kept
    """
    bot_dir = root / 'bot'
    if (bot_dir / 'bot.js').exists():
        return False
    for template_name, output_name in BOT_FILES:
        write_file(
            bot_dir / output_name,
            render_template(template_name, install_dir=install_dir, app_container=APP_CONTAINER),
        )
    return True
