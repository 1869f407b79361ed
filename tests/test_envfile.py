"""Tests for envfile.py: .env parsing and idempotent reconciliation."""

import stat
import sys
from pathlib import Path

import pytest

# Add scripts directory to path for imports
SCRIPTS_DIR = Path(__file__).parent.parent / 'scripts'
sys.path.insert(0, str(SCRIPTS_DIR))

from envfile import (  # noqa: E402
    ENV_HEADER,
    append_raw,
    contains_key,
    env_as_dict,
    format_entry,
    load_env_file,
    parse_env_text,
    reconcile_env_file,
    reconcile_env_text,
    write_atomic,
)

ABC_DEFAULTS = [('A', '1'), ('B', '2'), ('C', '3')]


class TestLoadEnvFile:
    """Tests for load_env_file / parse_env_text."""

    def test_parses_key_value_pairs(self, tmp_path):
        """Parses simple key=value pairs in file order."""
        env_file = tmp_path / '.env'
        env_file.write_text('FOO=bar\nBAZ=qux\n')

        assert load_env_file(env_file) == [('FOO', 'bar'), ('BAZ', 'qux')]

    def test_ignores_comments_and_empty_lines(self):
        """Ignores lines starting with # and empty lines."""
        text = '# comment\nFOO=bar\n\n   # indented comment\nBAZ=qux\n'

        assert parse_env_text(text) == [('FOO', 'bar'), ('BAZ', 'qux')]

    def test_handles_values_with_equals_sign(self):
        """Only the first = separates key from value."""
        assert parse_env_text('CONN=host=localhost;port=5432') == [
            ('CONN', 'host=localhost;port=5432')
        ]

    def test_strips_matching_quotes(self):
        """Surrounding single or double quotes are removed."""
        text = 'A="double"\nB=\'single\'\nC="unbalanced\''

        assert parse_env_text(text) == [
            ('A', 'double'), ('B', 'single'), ('C', '"unbalanced\''),
        ]

    def test_keeps_empty_values(self):
        """KEY= is a key with an empty value."""
        assert parse_env_text('PROXY_URL=\n') == [('PROXY_URL', '')]

    def test_keeps_duplicates(self):
        """Duplicate keys stay as separate entries."""
        assert parse_env_text('A=1\nA=2\n') == [('A', '1'), ('A', '2')]

    def test_skips_lines_without_equals(self):
        assert parse_env_text('export\nA=1\n') == [('A', '1')]

    def test_missing_file_raises(self, tmp_path):
        """A missing file is an OSError."""
        with pytest.raises(OSError):
            load_env_file(tmp_path / 'missing.env')


class TestLookups:
    """Tests for env_as_dict and contains_key."""

    def test_first_occurrence_wins(self):
        assert env_as_dict([('A', '1'), ('A', '2'), ('B', '3')]) == {'A': '1', 'B': '3'}

    def test_contains_key_exact_match(self):
        """Lookup is exact and case-sensitive."""
        entries = parse_env_text('N8N_HOST=example.com\n')

        assert contains_key(entries, 'N8N_HOST')
        assert not contains_key(entries, 'n8n_host')
        assert not contains_key(entries, 'N8N_HOS')

    def test_commented_key_is_not_present(self):
        """A commented-out assignment does not count."""
        entries = parse_env_text('# PROXY_URL=http://old\n')

        assert not contains_key(entries, 'PROXY_URL')


class TestWriting:
    """Tests for format_entry, append_raw and write_atomic."""

    def test_format_entry(self):
        assert format_entry('A', '1') == 'A=1'
        assert format_entry('EMPTY', '') == 'EMPTY='

    def test_format_entry_rejects_newline(self):
        """Values with line breaks would corrupt the file."""
        with pytest.raises(ValueError, match='line breaks'):
            format_entry('A', 'one\ntwo')

    def test_format_entry_rejects_bad_key(self):
        with pytest.raises(ValueError):
            format_entry('A=B', '1')
        with pytest.raises(ValueError):
            format_entry('', '1')

    def test_append_raw_adds_newline(self, tmp_path):
        env_file = tmp_path / '.env'
        env_file.write_text('A=1\n')

        append_raw(env_file, 'B=2')

        assert env_file.read_text() == 'A=1\nB=2\n'

    def test_write_atomic_replaces_content(self, tmp_path):
        """Content is replaced and no temp file is left behind."""
        target = tmp_path / 'docker-compose.yml'
        target.write_text('old')

        write_atomic(target, 'new')

        assert target.read_text() == 'new'
        assert not (tmp_path / 'docker-compose.yml.tmp').exists()


class TestReconcile:
    """Tests for the idempotent append merger."""

    def test_empty_file_gets_all_keys_in_order(self, tmp_path):
        """Empty file: exactly the defaults plus the header, in table order."""
        env_file = tmp_path / '.env'
        env_file.write_text('')

        reconcile_env_file(env_file, ABC_DEFAULTS)

        lines = env_file.read_text().splitlines()
        assert lines == [ENV_HEADER, 'A=1', 'B=2', 'C=3']

    def test_existing_value_is_untouched(self, tmp_path):
        """An operator-set value survives the merge."""
        env_file = tmp_path / '.env'
        env_file.write_text('A=99\n')

        results = reconcile_env_file(env_file, ABC_DEFAULTS)

        entries = load_env_file(env_file)
        assert entries == [('A', '99'), ('B', '2'), ('C', '3')]
        assert [r.status for r in results] == ['kept', 'added', 'added']

    def test_second_run_is_noop(self, tmp_path):
        """Running twice gives the same file and no second header."""
        env_file = tmp_path / '.env'
        env_file.write_text('N8N_HOST=example.com\nA=99\n')

        reconcile_env_file(env_file, ABC_DEFAULTS)
        first = env_file.read_text()
        results = reconcile_env_file(env_file, ABC_DEFAULTS)

        assert env_file.read_text() == first
        assert first.count(ENV_HEADER) == 1
        assert all(not r.added for r in results)

    def test_no_write_when_nothing_missing(self, tmp_path):
        """The file is not rewritten when every key exists."""
        env_file = tmp_path / '.env'
        env_file.write_text('A=1\nB=2\nC=3')
        mtime_before = env_file.stat().st_mtime_ns

        reconcile_env_file(env_file, ABC_DEFAULTS)

        assert env_file.read_text() == 'A=1\nB=2\nC=3'
        assert env_file.stat().st_mtime_ns == mtime_before

    def test_preserves_comments_and_missing_trailing_newline(self):
        """Existing text is kept byte for byte ahead of the new block."""
        text = '# Beget config\nN8N_HOST=example.com'

        content, _ = reconcile_env_text(text, [('A', '1')])

        assert content == f'# Beget config\nN8N_HOST=example.com\n\n{ENV_HEADER}\nA=1\n'

    def test_duplicate_existing_key_counts_as_present(self):
        """Duplicates are not deduplicated and the key is not re-added."""
        text = 'A=1\nA=2\n'

        content, results = reconcile_env_text(text, [('A', '3')])

        assert content == text
        assert results[0].status == 'kept'

    def test_duplicate_defaults_added_once(self):
        content, results = reconcile_env_text('', [('A', '1'), ('A', '2')])

        assert content.count('A=') == 1
        assert [r.added for r in results] == [True, False]

    def test_empty_default_value(self):
        content, results = reconcile_env_text('', [('PROXY_URL', '')])

        assert 'PROXY_URL=\n' in content
        assert results[0].value == ''

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            reconcile_env_file(tmp_path / '.env', ABC_DEFAULTS)

    def test_secret_file_mode_kept(self, tmp_path):
        """A 0600 .env stays 0600 after keys are appended."""
        env_file = tmp_path / '.env'
        env_file.write_text('N8N_ENCRYPTION_KEY=secret\n')
        env_file.chmod(0o600)

        reconcile_env_file(env_file, ABC_DEFAULTS)

        assert stat.S_IMODE(env_file.stat().st_mode) == 0o600
        assert 'A=1' in env_file.read_text()

    def test_non_utf8_bytes_survive(self, tmp_path):
        """Latin-1 bytes in a comment are written back unchanged."""
        env_file = tmp_path / '.env'
        original = b'# Beget \xe9t\xe9\nA=99\n'
        env_file.write_bytes(original)

        results = reconcile_env_file(env_file, ABC_DEFAULTS)

        content = env_file.read_bytes()
        assert content.startswith(original)
        assert content.endswith(b'B=2\nC=3\n')
        assert [r.status for r in results] == ['kept', 'added', 'added']

    def test_write_atomic_creates_new_file(self, tmp_path):
        target = tmp_path / 'docker-compose.yml'

        write_atomic(target, '---\n')

        assert target.read_text() == '---\n'
