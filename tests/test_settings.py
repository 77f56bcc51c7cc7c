"""Tests for the JSON settings stores"""

import json

from logpeek.plugins import NginxPlugin
from logpeek.settings import (
    DEFAULT_ANALYSIS_PLUGINS,
    MB,
    CatalogStore,
    ErrorAnalysisConfig,
    ErrorAnalysisStore,
    PluginSettingsStore,
    effective_base_path,
    settings_dir,
)


class TestPluginSettingsStore:
    """Tests for per-plugin records"""

    def test_missing_record_means_enabled(self):
        store = PluginSettingsStore()
        assert store.find_by_plugin_id('nginx') is None
        assert store.is_enabled('nginx')
        assert not store.read_compressed('nginx')
        assert store.base_path('nginx') is None

    def test_create_update_delete(self):
        store = PluginSettingsStore()
        store.create('nginx', enabled=False, settings={'readCompressed': True})
        assert not store.is_enabled('nginx')
        assert store.read_compressed('nginx')

        record = store.update('nginx', enabled=True, settings={'basePath': ' /srv/nginx '})
        assert record['enabled'] is True
        assert record['settings'] == {'readCompressed': True, 'basePath': ' /srv/nginx '}
        assert store.base_path('nginx') == '/srv/nginx'

        assert store.delete('nginx')
        assert not store.delete('nginx')

    def test_update_missing_returns_none(self):
        assert PluginSettingsStore().update('apache', enabled=False) is None

    def test_upsert_creates_then_merges(self):
        store = PluginSettingsStore()
        store.upsert('apache', settings={'readCompressed': True})
        store.upsert('apache', enabled=False)
        record = store.find_by_plugin_id('apache')
        assert record['enabled'] is False
        assert record['settings'] == {'readCompressed': True}
        assert 'updatedAt' in record

    def test_shared_between_instances(self):
        PluginSettingsStore().upsert('nginx', enabled=False)
        assert not PluginSettingsStore().is_enabled('nginx')

    def test_corrupt_file_falls_back_to_defaults(self):
        (settings_dir() / 'plugins.json').write_text('{not json')
        assert PluginSettingsStore().all() == {}


class TestCustomRegexStorage:
    """Custom regexes are stored under the normalized path"""

    def test_set_normalizes_path(self):
        store = PluginSettingsStore()
        entry = store.set_custom_regex('apache', '/var/log/apache2/access.log.2.gz', r'^(?P<ip>\S+)', 'access')
        assert entry['filePath'] == '/var/log/apache2/access.log'
        assert entry['logType'] == 'access'
        assert list(store.get_custom_regex_map('apache')) == ['/var/log/apache2/access.log']

    def test_get_by_rotated_variant(self):
        store = PluginSettingsStore()
        store.set_custom_regex('apache', '/var/log/apache2/access.log', r'^x')
        assert store.get_custom_regex('apache', '/var/log/apache2/access.log.1')['regex'] == r'^x'
        assert store.get_custom_regex('apache', '/var/log/apache2/error.log') is None

    def test_default_log_type(self):
        entry = PluginSettingsStore().set_custom_regex('nginx', '/a/access.log', r'^x')
        assert entry['logType'] == 'custom'

    def test_delete(self):
        store = PluginSettingsStore()
        store.set_custom_regex('nginx', '/a/access.log', r'^x')
        assert store.delete_custom_regex('nginx', '/a/access.log.1')
        assert store.get_custom_regex_map('nginx') == {}
        assert not store.delete_custom_regex('nginx', '/a/access.log')

    def test_other_settings_are_kept(self):
        store = PluginSettingsStore()
        store.upsert('nginx', settings={'readCompressed': True})
        store.set_custom_regex('nginx', '/a/access.log', r'^x')
        assert store.read_compressed('nginx')


class TestCatalogStore:
    """Tests for sources and files"""

    def test_source_crud(self):
        catalog = CatalogStore()
        source = catalog.create_source('web', 'nginx', '/var/log/nginx', ['access*.log'])
        assert source['id'] == 1
        assert source['type'] == 'nginx'
        assert catalog.get_source(1)['name'] == 'web'

        updated = catalog.update_source(1, name='edge', enabled=None)
        assert updated['name'] == 'edge'
        assert updated['enabled'] is True

        assert catalog.update_source(99, name='x') is None
        assert catalog.delete_source(1)
        assert not catalog.delete_source(1)

    def test_ids_are_not_reused(self):
        catalog = CatalogStore()
        catalog.create_source('a', 'nginx', '/a', [])
        catalog.delete_source(1)
        assert catalog.create_source('b', 'nginx', '/b', [])['id'] == 2

    def test_files_and_cascade(self):
        catalog = CatalogStore()
        first = catalog.create_source('a', 'nginx', '/a', [])
        second = catalog.create_source('b', 'apache', '/b', [])
        catalog.create_file(first['id'], '/a/access.log', 'access')
        catalog.create_file(second['id'], '/b/error.log', 'error')

        assert len(catalog.list_files()) == 2
        assert [f['filePath'] for f in catalog.list_files(first['id'])] == ['/a/access.log']

        catalog.delete_source(first['id'])
        assert [f['filePath'] for f in catalog.list_files()] == ['/b/error.log']

    def test_upsert_file(self):
        catalog = CatalogStore()
        source = catalog.create_source('a', 'nginx', '/a', [])
        created = catalog.upsert_file(source['id'], '/a/x.log', 'access')
        again = catalog.upsert_file(source['id'], '/a/x.log', 'error')
        assert created['id'] == again['id']
        assert again['logType'] == 'error'
        assert len(catalog.list_files()) == 1

    def test_update_and_delete_file(self):
        catalog = CatalogStore()
        source = catalog.create_source('a', 'nginx', '/a', [])
        record = catalog.create_file(source['id'], '/a/x.log', 'access')
        assert catalog.update_file(record['id'], maxLines=50)['maxLines'] == 50
        assert catalog.update_file(99, maxLines=1) is None
        assert catalog.delete_file(record['id'])
        assert catalog.get_file(record['id']) is None

    def test_written_as_json(self):
        CatalogStore().create_source('a', 'nginx', '/a', [])
        data = json.loads((settings_dir() / 'catalog.json').read_text())
        assert data['nextSourceId'] == 2


class TestErrorAnalysisConfig:
    """Out-of-range values are clamped rather than rejected"""

    def test_defaults(self):
        config = ErrorAnalysisConfig()
        assert config.error_summary_enabled is False
        assert config.enabled_plugins == DEFAULT_ANALYSIS_PLUGINS
        assert config.max_files_per_plugin == 20
        assert config.lines_per_file == 1000
        assert config.max_file_size_bytes == 10 * MB
        assert config.tail_lines == 1000

    def test_clamping(self):
        config = ErrorAnalysisConfig.model_validate(
            {'maxFilesPerPlugin': 0, 'linesPerFile': 50000, 'maxFileSizeBytes': 1, 'securityCheckDepth': 'extreme'}
        )
        assert config.max_files_per_plugin == 1
        assert config.lines_per_file == 10000
        assert config.max_file_size_bytes == MB
        assert config.security_check_depth == 'normal'

    def test_unknown_plugins_filtered(self):
        config = ErrorAnalysisConfig.model_validate({'enabledPlugins': ['nginx', 'iis']})
        assert config.enabled_plugins == ['nginx']
        fallback = ErrorAnalysisConfig.model_validate({'enabledPlugins': ['iis']})
        assert fallback.enabled_plugins == DEFAULT_ANALYSIS_PLUGINS

    def test_depth_sets_tail_lines(self):
        assert ErrorAnalysisConfig(security_check_depth='deep').tail_lines == 2000
        assert ErrorAnalysisConfig(security_check_depth='light').tail_lines == 500


class TestErrorAnalysisStore:
    def test_save_merges(self):
        store = ErrorAnalysisStore()
        store.save({'errorSummaryEnabled': True})
        config = store.save({'maxFilesPerPlugin': 5})
        assert config.error_summary_enabled is True
        assert config.max_files_per_plugin == 5
        assert ErrorAnalysisStore().load().max_files_per_plugin == 5


class TestEffectiveBasePath:
    """Explicit override, then saved setting, then env override, then default"""

    def test_priority(self, monkeypatch):
        plugin = NginxPlugin()
        store = PluginSettingsStore()
        assert effective_base_path(plugin, store) == '/var/log/nginx'

        monkeypatch.setenv('LOGPEEK_NGINX_BASE_PATH', '/env/nginx')
        assert effective_base_path(plugin, store) == '/env/nginx'

        store.upsert('nginx', settings={'basePath': '/saved/nginx'})
        assert effective_base_path(plugin, store) == '/saved/nginx'
        assert effective_base_path(plugin, store, '/explicit') == '/explicit'
