"""Tests for assets.py: Dockerfiles, shims, scripts and bot scaffold."""

import os
import stat
import sys
from pathlib import Path

# Add scripts directory to path for imports
SCRIPTS_DIR = Path(__file__).parent.parent / 'scripts'
sys.path.insert(0, str(SCRIPTS_DIR))

import assets  # noqa: E402


def is_executable(path: Path) -> bool:
    return bool(path.stat().st_mode & stat.S_IXUSR)


class TestDockerfiles:
    """Tests for write_dockerfiles."""

    def test_n8n_dockerfile_contents(self, tmp_path):
        written = assets.write_dockerfiles(tmp_path, docker_gid=121, include_tools=False)

        assert written == [tmp_path / 'Dockerfile.n8n']
        content = (tmp_path / 'Dockerfile.n8n').read_text()
        assert content.startswith('FROM docker.n8n.io/n8nio/n8n:latest\n')
        assert 'ARG DOCKER_GID=121' in content
        assert '    ffmpeg \\\n' in content
        assert '    jq \\\n    && pip install --no-cache-dir --break-system-packages yt-dlp' in content
        assert not (tmp_path / 'Dockerfile.tools').exists()

    def test_tools_dockerfile_line_continuations(self, tmp_path):
        """Every package line but the last ends with a backslash."""
        assets.write_dockerfiles(tmp_path, include_tools=True)

        content = (tmp_path / 'Dockerfile.tools').read_text()
        assert 'RUN apk add --no-cache \\\n    docker-cli \\\n' in content
        assert '    unzip\n' in content
        assert 'unzip \\' not in content


class TestShims:
    """Tests for write_shims."""

    def test_writes_executable_shims(self, tmp_path):
        written = assets.write_shims(tmp_path)

        names = sorted(path.name for path in written)
        assert names == ['fc-scan', 'ffmpeg', 'python', 'python3', 'yt-dlp']
        for path in written:
            assert is_executable(path)

    def test_shim_forwards_arguments(self, tmp_path):
        assets.write_shims(tmp_path)

        content = (tmp_path / 'shims' / 'yt-dlp').read_text()
        assert content == '#!/bin/bash\nexec /usr/local/bin/yt-dlp "$@"\n'


class TestUtilityScripts:
    """Tests for write_utility_scripts."""

    def test_scripts_are_executable(self, tmp_path):
        written = assets.write_utility_scripts(tmp_path, '/opt/beget/n8n')

        assert [p.name for p in written] == ['backup_n8n.sh', 'update_n8n.sh']
        assert all(is_executable(p) for p in written)

    def test_backup_script_keeps_seven_archives(self, tmp_path):
        assets.write_utility_scripts(tmp_path, '/srv/n8n')

        content = (tmp_path / 'backup_n8n.sh').read_text()
        assert 'INSTALL_DIR="/srv/n8n"' in content
        assert 'tail -n +8' in content
        assert '--format "{{.Names}}"' in content

    def test_update_script_rebuilds_n8n_images(self, tmp_path):
        assets.write_utility_scripts(tmp_path)

        content = (tmp_path / 'update_n8n.sh').read_text()
        assert 'docker compose build --no-cache n8n\n' in content
        assert 'docker compose build --no-cache n8n-worker\n' in content
        assert 'docker compose up -d\n' in content


class TestSupportFiles:
    """Tests for write_support_files."""

    def test_creates_missing_files(self, tmp_path):
        created = assets.write_support_files(tmp_path)

        assert sorted(p.name for p in created) == ['healthcheck.js', 'init-data.sh']
        assert 'port: 5678' in (tmp_path / 'healthcheck.js').read_text()
        assert is_executable(tmp_path / 'init-data.sh')

    def test_existing_files_untouched(self, tmp_path):
        """Operator files are never overwritten."""
        (tmp_path / 'healthcheck.js').write_text('// custom\n')
        (tmp_path / 'init-data.sh').write_text('#!/bin/bash\n# custom\n')

        created = assets.write_support_files(tmp_path)

        assert created == []
        assert (tmp_path / 'healthcheck.js').read_text() == '// custom\n'
        assert (tmp_path / 'init-data.sh').read_text() == '#!/bin/bash\n# custom\n'


class TestBotScaffold:
    """Tests for write_bot_scaffold."""

    def test_writes_scaffold(self, tmp_path):
        assert assets.write_bot_scaffold(tmp_path, '/srv/n8n') is True

        bot_dir = tmp_path / 'bot'
        assert sorted(os.listdir(bot_dir)) == ['Dockerfile', 'bot.js', 'package.json']
        bot_js = (bot_dir / 'bot.js').read_text()
        assert "const INSTALL_DIR = '/srv/n8n';" in bot_js
        assert "const APP_CONTAINER = 'n8n-app';" in bot_js

    def test_existing_bot_kept(self, tmp_path):
        bot_dir = tmp_path / 'bot'
        bot_dir.mkdir()
        (bot_dir / 'bot.js').write_text('// my bot\n')

        assert assets.write_bot_scaffold(tmp_path) is False
        assert (bot_dir / 'bot.js').read_text() == '// my bot\n'
        assert not (bot_dir / 'package.json').exists()


class TestTemplates:
    """All templates render with their expected variables."""

    def test_trailing_newline_kept(self):
        content = assets.render_template('shim.sh.j2', target='/usr/bin/ffmpeg')

        assert content.endswith('"$@"\n')
