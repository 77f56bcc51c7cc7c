import asyncio
import importlib.metadata
import logging
import os
import platform
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal

import anyio
import psutil
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.websockets import WebSocketState

from logpeek import analytics
from logpeek import error_summary as error_summary_module
from logpeek import prometheus as prom
from logpeek import reader
from logpeek.__version__ import __version__
from logpeek.custom_parser import InvalidRegexError, compile_custom_regex
from logpeek.error_summary import ErrorSummaryResult, ErrorSummaryService
from logpeek.models import (
    AnalysisSettingsUpdate,
    AnalyzeFileRequest,
    FileUpdate,
    GenerateRegexRequest,
    HealthResponse,
    ReadDirectRequest,
    RegexConfigRequest,
    ScanRequest,
    SourceCreate,
    SourceUpdate,
)
from logpeek.parser import LogParser
from logpeek.plugins import PluginRegistry, UnknownPluginError, default_registry
from logpeek.plugins.base import LogSourcePlugin
from logpeek.realtime import HEARTBEAT_INTERVAL, LogViewerHub
from logpeek.regex_generator import RegexGenerationError, generate_regex
from logpeek.settings import CatalogStore, ErrorAnalysisStore, PluginSettingsStore, effective_base_path
from logpeek.timestamps import as_datetime
from logpeek.utils import get_bool_env, get_cache_base, get_int_env


log_level_name = os.getenv('LOGPEEK_LOG_LEVEL', 'INFO').upper()
log_level = getattr(logging, log_level_name, logging.INFO)
logging.basicConfig(level=log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

logger = logging.getLogger(__name__)

API = '/api/log-viewer'


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: stores are created here so LOGPEEK_CACHE_DIR set by `serve` (or tests) is honoured
    registry = default_registry()
    plugin_settings = PluginSettingsStore()
    app.state.registry = registry
    app.state.plugin_settings = plugin_settings
    app.state.catalog = CatalogStore()
    app.state.analysis_settings = ErrorAnalysisStore()
    app.state.parser = LogParser(registry=registry, settings=plugin_settings)
    app.state.error_summary = ErrorSummaryService(registry, plugin_settings, app.state.analysis_settings)
    app.state.hub = LogViewerHub(
        app.state.parser,
        heartbeat_interval=get_int_env('LOGPEEK_HEARTBEAT_INTERVAL', int(HEARTBEAT_INTERVAL)),
        # LOGPEEK_FOLLOW_WATCH=false polls instead, e.g. on network filesystems
        follow_options={'use_watcher': get_bool_env('LOGPEEK_FOLLOW_WATCH', True)},
    )
    logger.info(f'Plugins: {", ".join(registry.ids())}')
    logger.info(f'Settings directory: {get_cache_base() / "settings"}')

    heartbeat_task = asyncio.create_task(app.state.hub.run_heartbeat())

    # Run app
    yield

    # Shutdown: stop the heartbeat and release every follower
    heartbeat_task.cancel()
    try:
        await heartbeat_task
    except asyncio.CancelledError:
        pass
    app.state.hub.close_all()
    logger.info('Shutting down logpeek')


app = FastAPI(
    title='logpeek',
    version=__version__,
    description="""
    Read, parse, tail and analyze web server and system logs.

    ## Features

    * **Plugins**: Apache, Nginx and host syslog sources with built-in parsers
    * **Custom regexes**: Per-file named-group patterns, shared by rotated and compressed variants
    * **Live tail**: WebSocket subscriptions with replay and follow
    * **Analytics**: Traffic overview, timeseries and top-N lists from access logs
    * **Error summary**: Error and warning density across recent log files

    ## Endpoints

    * `/api/log-viewer/...` - Plugins, catalog, reads, regex configuration, analytics and error summary
    * `/api/settings/analysis` - Error analysis options
    * `/ws/log-viewer` - Real-time log delivery
    * `/health` - Service health and system introspection
    * `/metrics` - Prometheus metrics
    """,
    license_info={'name': 'MIT'},
    lifespan=lifespan,
    docs_url='/docs',
    redoc_url='/redoc',
)


def _http_error(method: str, endpoint: str, status_code: int, error_type: str, detail: str) -> HTTPException:
    prom.record_error(error_type)
    prom.record_http_response(method, endpoint, status_code)
    return HTTPException(status_code=status_code, detail=detail)


def _ok(method: str, endpoint: str, result) -> dict:
    prom.record_http_response(method, endpoint, 200)
    return {'success': True, 'result': result}


def _plugin(plugin_id: str, method: str, endpoint: str) -> LogSourcePlugin:
    registry: PluginRegistry = app.state.registry
    try:
        return registry.get(plugin_id)
    except UnknownPluginError as e:
        raise _http_error(method, endpoint, 404, 'plugin_not_found', str(e))


def _internal_error(method: str, endpoint: str, e: Exception) -> HTTPException:
    logger.error(f'Unexpected error on {method} {endpoint}: {e!s}')
    return _http_error(method, endpoint, 500, 'internal_error', f'Internal error: {e!s}')


# ============================================================================
# General
# ============================================================================


def get_os_info() -> dict:
    return {
        'system': platform.system(),
        'release': platform.release(),
        'version': platform.version(),
        'machine': platform.machine(),
    }


def get_system_resources() -> dict:
    mem = psutil.virtual_memory()
    return {
        'cpu_cores': psutil.cpu_count(logical=True),
        'cpu_cores_physical': psutil.cpu_count(logical=False),
        'ram_total_gb': round(mem.total / (1024**3), 2),
        'ram_available_gb': round(mem.available / (1024**3), 2),
        'ram_percent_used': mem.percent,
    }


def get_python_packages() -> dict:
    python_packages = {}
    key_packages = ['fastapi', 'pydantic', 'uvicorn', 'watchdog', 'psutil', 'prometheus-client']
    for package in key_packages:
        try:
            python_packages[package] = importlib.metadata.version(package)
        except importlib.metadata.PackageNotFoundError:
            pass
    return python_packages


def get_constants() -> dict:
    return {
        'LOG_LEVEL': log_level_name,
        'MAX_REPLAY_LINES': reader.MAX_REPLAY_LINES,
        'POLL_INTERVAL': reader.POLL_INTERVAL,
        'MAX_WATCH_ERRORS': reader.MAX_WATCH_ERRORS,
        'FOLLOW_WATCH': app.state.hub.follow_options['use_watcher'],
        'HEARTBEAT_INTERVAL': app.state.hub.heartbeat_interval,
        'ANALYTICS_MAX_LINES_PER_FILE': analytics.MAX_LINES_PER_FILE,
        'ANALYTICS_MAX_FILES_TOTAL': analytics.MAX_FILES_TOTAL,
        'ERROR_SUMMARY_CACHE_TTL': error_summary_module.CACHE_TTL_SECONDS,
        'CACHE_DIR': str(get_cache_base()),
    }


def get_app_env_variables() -> dict:
    app_env_prefixes = ['LOGPEEK_', 'UVICORN_', 'PROMETHEUS_']
    return {key: value for key, value in os.environ.items() if any(key.startswith(p) for p in app_env_prefixes)}


@app.get('/health', tags=['General'], response_model=HealthResponse)
async def health() -> HealthResponse:
    """
    Health check and system introspection endpoint.

    Returns:
    - Service status
    - Application and Python versions
    - Operating system information and resources
    - Registered plugins
    - Application constants and related environment variables
    """
    prom.record_http_response('GET', '/health', 200)
    return HealthResponse(
        status='ok',
        app_version=__version__,
        python_version=platform.python_version(),
        os_info=get_os_info(),
        system_resources=get_system_resources(),
        python_packages=get_python_packages(),
        plugins=app.state.registry.ids(),
        constants=get_constants(),
        environment=get_app_env_variables(),
    )


@app.get('/metrics', tags=['Monitoring'], include_in_schema=True)
async def metrics():
    """
    Prometheus metrics endpoint.

    **Metrics Categories:**
    - HTTP responses and errors (by endpoint, status and type)
    - Lines read and files scanned
    - Analytics and error summary durations, error summary cache hits/misses
    - Active follow subscriptions and WebSocket connections
    - Follow fallbacks from file watching to polling
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ============================================================================
# Plugins and file discovery
# ============================================================================


def _describe_plugin(plugin: LogSourcePlugin) -> dict:
    plugin_settings: PluginSettingsStore = app.state.plugin_settings
    return {
        **plugin.describe(),
        'enabled': plugin_settings.is_enabled(plugin.plugin_id),
        'readCompressed': plugin_settings.read_compressed(plugin.plugin_id),
        'basePath': effective_base_path(plugin, plugin_settings),
    }


@app.get(f'{API}/plugins', tags=['Plugins'])
async def list_plugins():
    """List registered plugins with their effective settings."""
    return _ok('GET', f'{API}/plugins', [_describe_plugin(p) for p in app.state.registry.all()])


async def _scan(plugin: LogSourcePlugin, base_path: str | None, patterns: list[str] | None):
    root = effective_base_path(plugin, app.state.plugin_settings, base_path)
    files = await anyio.to_thread.run_sync(plugin.scan_log_files, root, patterns or plugin.get_default_file_patterns())
    return root, files


@app.get(f'{API}/plugins/{{plugin_id}}/files', tags=['Plugins'])
async def list_plugin_files(
    plugin_id: str,
    base_path: str | None = Query(None, alias='basePath', description='Overrides the plugin base path'),
):
    """Scan the plugin's base path for log files."""
    endpoint = f'{API}/plugins/{{plugin_id}}/files'
    plugin = _plugin(plugin_id, 'GET', endpoint)
    root, files = await _scan(plugin, base_path, None)
    return _ok('GET', endpoint, {'basePath': root, 'files': [f.to_dict() for f in files]})


@app.get(f'{API}/plugins/{{plugin_id}}/files-direct', tags=['Plugins'])
async def list_plugin_files_direct(
    plugin_id: str,
    base_path: str | None = Query(None, alias='basePath', description='Overrides the plugin base path'),
):
    """Quick scan without touching the catalog; each file carries a readable flag."""
    endpoint = f'{API}/plugins/{{plugin_id}}/files-direct'
    plugin = _plugin(plugin_id, 'GET', endpoint)
    root, files = await _scan(plugin, base_path, None)
    result = [{**f.to_dict(), 'readable': os.access(f.path, os.R_OK)} for f in files]
    return _ok('GET', endpoint, {'basePath': root, 'files': result})


@app.post(f'{API}/plugins/{{plugin_id}}/scan', tags=['Plugins'])
async def scan_plugin(plugin_id: str, request: ScanRequest):
    """Scan for log files, optionally upserting them into the catalog under a source."""
    endpoint = f'{API}/plugins/{{plugin_id}}/scan'
    plugin = _plugin(plugin_id, 'POST', endpoint)
    catalog: CatalogStore = app.state.catalog

    if request.save_to_db:
        if request.source_id is None:
            raise _http_error('POST', endpoint, 400, 'bad_request', 'sourceId is required when saveToDb is set')
        if catalog.get_source(request.source_id) is None:
            raise _http_error('POST', endpoint, 404, 'not_found', f'Source not found: {request.source_id}')

    root, files = await _scan(plugin, request.base_path, request.patterns)
    saved = []
    if request.save_to_db:
        saved = [catalog.upsert_file(request.source_id, f.path, f.type) for f in files]
        logger.info(f'Saved {len(saved)} files from {root} under source {request.source_id}')
    return _ok('POST', endpoint, {'basePath': root, 'files': [f.to_dict() for f in files], 'saved': saved})


# ============================================================================
# Catalog: sources and files
# ============================================================================


@app.get(f'{API}/sources', tags=['Catalog'])
async def list_sources():
    return _ok('GET', f'{API}/sources', app.state.catalog.list_sources())


@app.post(f'{API}/sources', tags=['Catalog'])
async def create_source(request: SourceCreate):
    endpoint = f'{API}/sources'
    plugin = _plugin(request.plugin_id, 'POST', endpoint)
    source = app.state.catalog.create_source(
        name=request.name,
        plugin_id=request.plugin_id,
        base_path=request.base_path or effective_base_path(plugin, app.state.plugin_settings),
        file_patterns=request.file_patterns or plugin.get_default_file_patterns(),
        type=request.type,
        enabled=request.enabled,
        follow=request.follow,
        max_lines=request.max_lines,
    )
    return _ok('POST', endpoint, source)


@app.get(f'{API}/sources/{{source_id}}', tags=['Catalog'])
async def get_source(source_id: int):
    endpoint = f'{API}/sources/{{source_id}}'
    source = app.state.catalog.get_source(source_id)
    if source is None:
        raise _http_error('GET', endpoint, 404, 'not_found', f'Source not found: {source_id}')
    return _ok('GET', endpoint, {**source, 'files': app.state.catalog.list_files(source_id)})


@app.put(f'{API}/sources/{{source_id}}', tags=['Catalog'])
async def update_source(source_id: int, request: SourceUpdate):
    endpoint = f'{API}/sources/{{source_id}}'
    source = app.state.catalog.update_source(source_id, **request.model_dump(by_alias=True, exclude_none=True))
    if source is None:
        raise _http_error('PUT', endpoint, 404, 'not_found', f'Source not found: {source_id}')
    return _ok('PUT', endpoint, source)


@app.delete(f'{API}/sources/{{source_id}}', tags=['Catalog'])
async def delete_source(source_id: int):
    endpoint = f'{API}/sources/{{source_id}}'
    if not app.state.catalog.delete_source(source_id):
        raise _http_error('DELETE', endpoint, 404, 'not_found', f'Source not found: {source_id}')
    return _ok('DELETE', endpoint, {'id': source_id})


@app.get(f'{API}/files', tags=['Catalog'])
async def list_files(source_id: int | None = Query(None, alias='sourceId')):
    return _ok('GET', f'{API}/files', app.state.catalog.list_files(source_id))


@app.put(f'{API}/files/{{file_id}}', tags=['Catalog'])
async def update_file(file_id: int, request: FileUpdate):
    endpoint = f'{API}/files/{{file_id}}'
    record = app.state.catalog.update_file(file_id, **request.model_dump(by_alias=True, exclude_none=True))
    if record is None:
        raise _http_error('PUT', endpoint, 404, 'not_found', f'File not found: {file_id}')
    return _ok('PUT', endpoint, record)


@app.delete(f'{API}/files/{{file_id}}', tags=['Catalog'])
async def delete_file(file_id: int):
    endpoint = f'{API}/files/{{file_id}}'
    if not app.state.catalog.delete_file(file_id):
        raise _http_error('DELETE', endpoint, 404, 'not_found', f'File not found: {file_id}')
    return _ok('DELETE', endpoint, {'id': file_id})


# ============================================================================
# Reads
# ============================================================================


async def _read_parsed(
    plugin: LogSourcePlugin,
    file_path: str,
    log_type: str | None,
    max_lines: int,
    from_line: int,
    method: str,
    endpoint: str,
) -> dict:
    info = await anyio.to_thread.run_sync(reader.inspect, file_path)
    if not info.exists or not info.readable:
        raise _http_error(method, endpoint, 404, 'file_not_found', f'File not found or not readable: {file_path}')

    parser: LogParser = app.state.parser
    log_type = log_type or plugin.determine_log_type(file_path)
    results = await anyio.to_thread.run_sync(
        lambda: parser.parse_file(
            plugin.plugin_id,
            file_path,
            log_type,
            max_lines=max_lines,
            from_line=from_line,
            read_compressed=parser.settings.read_compressed(plugin.plugin_id),
        )
    )
    return {
        'logs': [r.to_dict() for r in results],
        'columns': parser.get_columns(plugin.plugin_id, log_type),
        'logType': log_type,
        'fileInfo': info.to_dict(),
        'count': len(results),
    }


@app.get(f'{API}/files/{{file_id}}/logs', tags=['Reads'])
async def get_file_logs(
    file_id: int,
    max_lines: int | None = Query(None, alias='maxLines', ge=0, description='Defaults to the file maxLines setting'),
    from_line: int = Query(0, alias='fromLine', ge=0),
):
    """Parsed read of a catalogued file, using its source's plugin."""
    endpoint = f'{API}/files/{{file_id}}/logs'
    catalog: CatalogStore = app.state.catalog
    record = catalog.get_file(file_id)
    if record is None:
        raise _http_error('GET', endpoint, 404, 'not_found', f'File not found: {file_id}')
    source = catalog.get_source(record['sourceId'])
    if source is None:
        raise _http_error('GET', endpoint, 404, 'not_found', f'Source not found: {record["sourceId"]}')

    plugin = _plugin(source['pluginId'], 'GET', endpoint)
    limit = record.get('maxLines', 0) if max_lines is None else max_lines
    result = await _read_parsed(plugin, record['filePath'], record.get('logType'), limit, from_line, 'GET', endpoint)
    return _ok('GET', endpoint, {**result, 'file': record})


@app.post(f'{API}/plugins/{{plugin_id}}/read-direct', tags=['Reads'])
async def read_direct(plugin_id: str, request: ReadDirectRequest):
    """Parsed read of any file by path."""
    endpoint = f'{API}/plugins/{{plugin_id}}/read-direct'
    plugin = _plugin(plugin_id, 'POST', endpoint)
    result = await _read_parsed(
        plugin, request.file_path, request.log_type, request.max_lines, request.from_line, 'POST', endpoint
    )
    return _ok('POST', endpoint, result)


@app.post(f'{API}/plugins/{{plugin_id}}/read-raw', tags=['Reads'])
async def read_raw(plugin_id: str, request: ReadDirectRequest):
    """Unparsed read of any file by path."""
    endpoint = f'{API}/plugins/{{plugin_id}}/read-raw'
    _plugin(plugin_id, 'POST', endpoint)
    info = await anyio.to_thread.run_sync(reader.inspect, request.file_path)
    if not info.exists or not info.readable:
        raise _http_error(
            'POST', endpoint, 404, 'file_not_found', f'File not found or not readable: {request.file_path}'
        )

    read_compressed = app.state.plugin_settings.read_compressed(plugin_id)
    lines = await anyio.to_thread.run_sync(
        reader.read_lines, request.file_path, request.max_lines, request.from_line, read_compressed
    )
    prom.record_lines_read(len(lines))
    return _ok(
        'POST',
        endpoint,
        {
            'lines': [{'line': raw.content, 'lineNumber': raw.line_number} for raw in lines],
            'fileInfo': info.to_dict(),
            'count': len(lines),
        },
    )


# ============================================================================
# Custom regexes
# ============================================================================


@app.get(f'{API}/plugins/{{plugin_id}}/regex-config', tags=['Regex'])
async def get_regex_config(plugin_id: str, file_path: str | None = Query(None, alias='filePath')):
    """Custom regex of one file (null when none), or the plugin's whole map without filePath."""
    endpoint = f'{API}/plugins/{{plugin_id}}/regex-config'
    _plugin(plugin_id, 'GET', endpoint)
    store: PluginSettingsStore = app.state.plugin_settings
    if file_path is None:
        return _ok('GET', endpoint, store.get_custom_regex_map(plugin_id))
    return _ok('GET', endpoint, store.get_custom_regex(plugin_id, file_path))


@app.put(f'{API}/plugins/{{plugin_id}}/regex-config', tags=['Regex'])
async def put_regex_config(plugin_id: str, request: RegexConfigRequest):
    """Validate and store a custom regex under the file's normalized path."""
    endpoint = f'{API}/plugins/{{plugin_id}}/regex-config'
    _plugin(plugin_id, 'PUT', endpoint)
    try:
        compile_custom_regex(request.regex)
    except InvalidRegexError as e:
        raise _http_error('PUT', endpoint, 400, 'invalid_regex', f'Invalid regex: {e}')

    entry = app.state.plugin_settings.set_custom_regex(plugin_id, request.file_path, request.regex, request.log_type)
    logger.info(f'Custom regex stored for {plugin_id}:{entry["filePath"]}')
    return _ok('PUT', endpoint, entry)


@app.delete(f'{API}/plugins/{{plugin_id}}/regex-config', tags=['Regex'])
async def delete_regex_config(plugin_id: str, file_path: str = Query(..., alias='filePath')):
    endpoint = f'{API}/plugins/{{plugin_id}}/regex-config'
    _plugin(plugin_id, 'DELETE', endpoint)
    if not app.state.plugin_settings.delete_custom_regex(plugin_id, file_path):
        raise _http_error('DELETE', endpoint, 404, 'not_found', f'No custom regex for {file_path}')
    return _ok('DELETE', endpoint, {'filePath': file_path})


@app.get(f'{API}/plugins/{{plugin_id}}/custom-regex-count', tags=['Regex'])
async def custom_regex_count(plugin_id: str):
    endpoint = f'{API}/plugins/{{plugin_id}}/custom-regex-count'
    _plugin(plugin_id, 'GET', endpoint)
    return _ok('GET', endpoint, {'count': len(app.state.plugin_settings.get_custom_regex_map(plugin_id))})


@app.get(f'{API}/custom-regexes', tags=['Regex'])
async def list_custom_regexes():
    """Every stored custom regex across plugins."""
    store: PluginSettingsStore = app.state.plugin_settings
    result = [
        {'pluginId': plugin_id, 'filePath': path, **entry}
        for plugin_id in app.state.registry.ids()
        for path, entry in store.get_custom_regex_map(plugin_id).items()
    ]
    return _ok('GET', f'{API}/custom-regexes', result)


@app.post(f'{API}/generate-regex', tags=['Regex'])
async def generate_regex_endpoint(request: GenerateRegexRequest):
    """Synthesize a named-group regex from a sample line and test it against the line."""
    endpoint = f'{API}/generate-regex'
    try:
        generated = generate_regex(request.log_line)
    except RegexGenerationError as e:
        raise _http_error('POST', endpoint, 400, 'bad_request', str(e))
    return _ok('POST', endpoint, generated.to_dict())


# ============================================================================
# Analytics
# ============================================================================


@app.get(f'{API}/analytics', tags=['Analytics'])
async def get_analytics(
    plugin_id: str | None = Query(None, alias='pluginId', description='apache, nginx or all'),
    date_from: datetime | None = Query(None, alias='from', examples=['2024-01-01T00:00:00Z']),
    date_to: datetime | None = Query(None, alias='to', examples=['2024-01-31T23:59:59Z']),
    bucket: Literal['minute', 'hour', 'day'] = Query('hour'),
    top_limit: int = Query(analytics.DEFAULT_TOP_LIMIT, alias='topLimit', ge=1),
    file_scope: Literal['latest', 'all'] = Query('all', alias='fileScope'),
    include_compressed: bool = Query(False, alias='includeCompressed'),
):
    """
    Access log analytics over the enabled web server plugins.

    - **overview**: totals, status bands, unique visitors, bytes
    - **timeseries**: requests and unique visitors per bucket
    - **distribution** / **top**: ranked breakdowns (topLimit capped at 50)
    """
    endpoint = f'{API}/analytics'
    try:
        result = await analytics.get_all_analytics(
            app.state.parser,
            plugin_id=plugin_id,
            date_from=as_datetime(date_from),
            date_to=as_datetime(date_to),
            bucket=bucket,
            top_limit=top_limit,
            file_scope=file_scope,
            include_compressed=include_compressed,
        )
    except Exception as e:
        prom.record_analytics_request('error', 0)
        raise _internal_error('GET', endpoint, e)
    return _ok('GET', endpoint, result)


# ============================================================================
# Error summary
# ============================================================================


@app.get(f'{API}/error-summary', tags=['Error summary'])
async def get_error_summary():
    """Error and warning density of recent log files, cached for a short time."""
    endpoint = f'{API}/error-summary'
    config = await anyio.to_thread.run_sync(app.state.analysis_settings.load)
    if not config.error_summary_enabled:
        prom.record_error_summary_disabled()
        prom.record_http_response('GET', endpoint, 200)
        return {
            'success': True,
            'enabled': False,
            'result': ErrorSummaryResult().to_dict(),
            'fromCache': False,
            'cacheAgeMs': 0,
        }

    service: ErrorSummaryService = app.state.error_summary
    try:
        meta = await service.get_summary_with_meta()
    except Exception as e:
        raise _internal_error('GET', endpoint, e)

    prom.record_http_response('GET', endpoint, 200)
    return {
        'success': True,
        'enabled': True,
        'result': meta['result'].to_dict(),
        'fromCache': meta['fromCache'],
        'cacheAgeMs': meta['cacheAgeMs'],
    }


@app.get(f'{API}/error-summary/progress', tags=['Error summary'])
async def get_error_summary_progress():
    return _ok('GET', f'{API}/error-summary/progress', app.state.error_summary.get_progress())


@app.post(f'{API}/error-summary/invalidate', tags=['Error summary'])
async def invalidate_error_summary():
    app.state.error_summary.invalidate()
    prom.record_http_response('POST', f'{API}/error-summary/invalidate', 200)
    return {'success': True}


@app.post(f'{API}/error-summary/analyze-file', tags=['Error summary'])
async def analyze_file(request: AnalyzeFileRequest):
    """Count errors over a whole file, for files the summary skipped as too large."""
    endpoint = f'{API}/error-summary/analyze-file'
    _plugin(request.plugin_id, 'POST', endpoint)
    service: ErrorSummaryService = app.state.error_summary
    read_compressed = app.state.plugin_settings.read_compressed(request.plugin_id)
    summary, error = await anyio.to_thread.run_sync(
        service.analyze_single_file, request.plugin_id, request.file_path, read_compressed
    )
    if error:
        raise _http_error('POST', endpoint, 404, 'file_not_found', f'{error}: {request.file_path}')
    return _ok('POST', endpoint, summary.to_dict())


# ============================================================================
# Settings
# ============================================================================


@app.get('/api/settings/analysis', tags=['Settings'])
async def get_analysis_settings():
    prom.record_http_response('GET', '/api/settings/analysis', 200)
    return app.state.analysis_settings.load().model_dump(by_alias=True)


@app.put('/api/settings/analysis', tags=['Settings'])
async def put_analysis_settings(request: AnalysisSettingsUpdate):
    """Merge and store error analysis options. The cached error summary is dropped."""
    config = app.state.analysis_settings.save(request.changes())
    app.state.error_summary.invalidate()
    prom.record_http_response('PUT', '/api/settings/analysis', 200)
    return config.model_dump(by_alias=True)


# ============================================================================
# Real-time log viewer
# ============================================================================


async def _drain_outgoing(websocket: WebSocket, session):
    while True:
        message = await session.outgoing.get()
        if message is None:
            break
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError):
            # Client went away; the receive loop ends the session
            return
    # Session closed by the server side (heartbeat or shutdown)
    if websocket.client_state == WebSocketState.CONNECTED and websocket.application_state == WebSocketState.CONNECTED:
        try:
            await websocket.close(code=1001)
        except RuntimeError:
            pass


@app.websocket('/ws/log-viewer')
async def log_viewer_socket(websocket: WebSocket):
    """
    Live log delivery.

    Client frames: {type: subscribe|unsubscribe|filter|pong, fileId, pluginId?, filePath?, logType?,
    follow?, fromLine?, filters?}. Server frames: {type: connected|subscribed|log-line|error|
    unsubscribed|filter-applied|ping, fileId?, log?, lineNumber?, message?}.
    """
    await websocket.accept()
    hub: LogViewerHub = app.state.hub
    session = hub.connect()
    sender = asyncio.create_task(_drain_outgoing(websocket, session))
    try:
        while True:
            text = await websocket.receive_text()
            await session.handle_text(text)
    except WebSocketDisconnect:
        logger.debug('Log viewer client disconnected')
    finally:
        hub.disconnect(session)
        await sender
