"""Pydantic models for API requests and responses"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model exchanging camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(BaseModel):
    """Health check response with system introspection data"""

    status: str = Field(..., examples=['ok'])
    app_version: str = Field(..., examples=['0.1.0'], description='Application version')
    python_version: str = Field(..., examples=['3.13.1'], description='Python interpreter version')
    os_info: dict[str, str] = Field(
        ...,
        examples=[{'system': 'Linux', 'release': '6.8.0', 'machine': 'x86_64'}],
        description='Operating system information',
    )
    system_resources: dict[str, Any] = Field(
        ...,
        examples=[{'cpu_cores': 8, 'cpu_cores_physical': 4, 'ram_total_gb': 16.0, 'ram_available_gb': 8.5}],
        description='System resources (CPU cores and RAM)',
    )
    python_packages: dict[str, str] = Field(
        default_factory=dict,
        examples=[{'fastapi': '0.115.6', 'pydantic': '2.11.0', 'watchdog': '6.0.0'}],
        description='Key Python package versions',
    )
    plugins: list[str] = Field(default_factory=list, examples=[['apache', 'nginx', 'host-system']])
    constants: dict[str, Any] = Field(
        default_factory=dict,
        examples=[{'LOG_LEVEL': 'INFO', 'MAX_REPLAY_LINES': 10000}],
        description='Application configuration constants',
    )
    environment: dict[str, str] = Field(
        default_factory=dict,
        examples=[{'LOGPEEK_LOG_LEVEL': 'INFO'}],
        description='Application-related environment variables',
    )


class ReadDirectRequest(CamelModel):
    """Bounded read of a file outside the catalog"""

    file_path: str = Field(..., examples=['/var/log/nginx/access.log'], description='Absolute path of the log file')
    log_type: str | None = Field(None, examples=['access'], description='Log type, derived from the name if omitted')
    max_lines: int = Field(1000, ge=0, examples=[500], description='Maximum lines to return (0 for all)')
    from_line: int = Field(0, ge=0, examples=[0], description='Number of leading lines to skip')


class RegexConfigRequest(CamelModel):
    """Custom regex for one log file (stored under its normalized path)"""

    file_path: str = Field(..., examples=['/var/log/apache2/access.log.1'])
    regex: str = Field(..., examples=[r'^(?P<ip>\S+) .*$'], description='Pattern with named groups')
    log_type: str | None = Field(None, examples=['access'])


class GenerateRegexRequest(CamelModel):
    """Sample line to synthesize a regex from"""

    log_line: str = Field(
        ...,
        examples=['192.168.1.1 - - [01/Jan/2024:00:00:00 +0100] "GET /index.php HTTP/1.1" 200 1234'],
    )


class ScanRequest(CamelModel):
    """Plugin file scan, optionally recorded in the catalog"""

    base_path: str | None = Field(None, examples=['/var/log/nginx'], description='Overrides the plugin base path')
    patterns: list[str] | None = Field(None, examples=[['access*.log', 'error*.log']])
    save_to_db: bool = Field(False, description='Upsert scanned files into the catalog under source_id')
    source_id: int | None = Field(None, examples=[1])


class SourceCreate(CamelModel):
    name: str = Field(..., examples=['Production nginx'])
    plugin_id: str = Field(..., examples=['nginx'])
    base_path: str | None = Field(None, examples=['/var/log/nginx'])
    file_patterns: list[str] | None = None
    type: str | None = None
    enabled: bool = True
    follow: bool = True
    max_lines: int = Field(0, ge=0)


class SourceUpdate(CamelModel):
    name: str | None = None
    base_path: str | None = None
    file_patterns: list[str] | None = None
    type: str | None = None
    enabled: bool | None = None
    follow: bool | None = None
    max_lines: int | None = Field(None, ge=0)


class FileUpdate(CamelModel):
    log_type: str | None = None
    enabled: bool | None = None
    follow: bool | None = None
    max_lines: int | None = Field(None, ge=0)


class AnalyzeFileRequest(CamelModel):
    """Full-file error count for one file, typically one skipped as too large"""

    plugin_id: str = Field(..., examples=['nginx'])
    file_path: str = Field(..., examples=['/var/log/nginx/error.log'])


class AnalysisSettingsUpdate(CamelModel):
    """Partial update of the error analysis options. Out-of-range values are clamped."""

    error_summary_enabled: bool | None = None
    enabled_plugins: list[str] | None = None
    max_files_per_plugin: int | None = None
    lines_per_file: int | None = None
    max_file_size_bytes: int | None = None
    security_check_depth: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class LogViewerMessage(CamelModel):
    """Client frame of the log viewer WebSocket"""

    type: str | None = None
    file_id: str | int | None = None
    plugin_id: str | None = None
    file_path: str | None = None
    log_type: str | None = None
    follow: bool | None = None
    from_line: int | None = Field(None, ge=0)
    filters: dict[str, Any] | None = None
