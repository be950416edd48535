"""Runtime settings and their TOML representation.

Settings are flat Pydantic sections; the TOML file mirrors them:

    [cache]      -> CacheSettings
    [download]   -> DownloadSettings
    [server]     -> TileServerOptions
    [regions.*]  -> extra named regions for the downloader
"""

from __future__ import annotations

import logging
from pathlib import Path

import tomlkit
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from tomlkit.exceptions import ParseError

from domain.models import RegionSpec
from domain.regions import parse_regions_table
from shared.constants import (
    CLI_MAX_CONCURRENT,
    CLI_OUTPUT_DIR,
    CLI_REQUEST_DELAY,
    CLI_TILE_SERVERS,
    CLI_USER_AGENT,
    DOWNLOAD_BATCH_DELAY,
    DOWNLOAD_BATCH_SIZE,
    HTTP_RETRIES_DEFAULT,
    HTTP_RETRY_DELAY,
    HTTP_TIMEOUT_DEFAULT,
    TILE_CACHE_MAX_SIZE_BYTES,
    TILE_CACHE_MAX_TILES,
    TILE_CACHE_TTL_SECONDS,
    TILE_SERVERS,
    TILE_SUBDOMAINS,
    USER_AGENT,
)
from shared.errors import ConfigError

logger = logging.getLogger(__name__)


class CacheSettings(BaseModel):
    """Limits and location of the tile cache store."""

    model_config = {'extra': 'ignore'}

    # None => resolved by infrastructure.http.resolve_cache_dir()
    cache_dir: str | None = None
    max_cache_size_bytes: int = Field(default=TILE_CACHE_MAX_SIZE_BYTES, gt=0)
    max_tile_count: int = Field(default=TILE_CACHE_MAX_TILES, gt=0)
    # 0 disables expiry
    ttl_seconds: float = Field(default=TILE_CACHE_TTL_SECONDS, ge=0)


class DownloadSettings(BaseModel):
    """HTTP and rate-limit parameters of the pipeline and the CLI."""

    model_config = {'extra': 'ignore'}

    tile_servers: list[str] = Field(default_factory=lambda: list(TILE_SERVERS))
    subdomains: list[str] = Field(default_factory=lambda: list(TILE_SUBDOMAINS))
    user_agent: str = USER_AGENT
    timeout_s: float = Field(default=HTTP_TIMEOUT_DEFAULT, gt=0)
    max_retries: int = Field(default=HTTP_RETRIES_DEFAULT, ge=1)
    retry_delay_s: float = Field(default=HTTP_RETRY_DELAY, ge=0)
    batch_size: int = Field(default=DOWNLOAD_BATCH_SIZE, ge=1)
    batch_delay_s: float = Field(default=DOWNLOAD_BATCH_DELAY, ge=0)

    # Standalone downloader
    cli_tile_servers: list[str] = Field(default_factory=lambda: list(CLI_TILE_SERVERS))
    cli_user_agent: str = CLI_USER_AGENT
    concurrency: int = Field(default=CLI_MAX_CONCURRENT, ge=1)
    request_delay_s: float = Field(default=CLI_REQUEST_DELAY, ge=0)
    output_dir: str = CLI_OUTPUT_DIR

    @field_validator('tile_servers', 'cli_tile_servers')
    @classmethod
    def validate_templates(cls, v: list[str]) -> list[str]:
        if not v:
            msg = 'At least one tile server is required'
            raise ValueError(msg)
        for template in v:
            if not all(part in template for part in ('{z}', '{x}', '{y}')):
                msg = f'Tile server template lacks {{z}}/{{x}}/{{y}}: {template}'
                raise ValueError(msg)
        return v

    @field_validator('subdomains')
    @classmethod
    def validate_subdomains(cls, v: list[str]) -> list[str]:
        if not v:
            msg = 'At least one subdomain is required'
            raise ValueError(msg)
        return v


class TileServerOptions(BaseModel):
    """Facade behaviour switches, each togglable at runtime."""

    model_config = ConfigDict(validate_assignment=True, extra='ignore')

    enabled: bool = True
    use_local_first: bool = True
    fallback_to_remote: bool = True


class AppSettings(BaseModel):
    cache: CacheSettings = Field(default_factory=CacheSettings)
    download: DownloadSettings = Field(default_factory=DownloadSettings)
    server: TileServerOptions = Field(default_factory=TileServerOptions)
    regions: dict[str, RegionSpec] = Field(default_factory=dict)


def settings_from_dict(data: dict) -> AppSettings:
    """Validate a sectioned dict (as parsed from TOML)."""
    data = dict(data)
    regions_table = data.pop('regions', None) or {}
    try:
        settings = AppSettings.model_validate(
            {k: dict(v) for k, v in data.items() if isinstance(v, dict)}
        )
    except ValidationError as e:
        err = e.errors()[0]
        loc = '.'.join(str(p) for p in err['loc'])
        msg = f'Invalid setting {loc}: {err["msg"]}'
        raise ConfigError(msg) from e
    settings.regions = parse_regions_table(regions_table)
    return settings


def load_settings(path: str | Path | None = None) -> AppSettings:
    """Load settings from a TOML file; defaults when ``path`` is None."""
    if path is None:
        return AppSettings()
    p = Path(path)
    if not p.exists():
        msg = f'Settings file not found: {p}'
        raise ConfigError(msg)
    try:
        data = tomlkit.parse(p.read_text(encoding='utf-8')).unwrap()
    except ParseError as e:
        msg = f'Cannot parse {p}: {e}'
        raise ConfigError(msg) from e
    settings = settings_from_dict(data)
    logger.info('Settings loaded from %s (%d extra regions)', p, len(settings.regions))
    return settings


def save_settings(settings: AppSettings, path: str | Path) -> Path:
    """Write settings as sectioned TOML."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    doc = tomlkit.document()
    doc.add(tomlkit.comment('Tile cache settings'))
    for section in ('cache', 'download', 'server'):
        table = tomlkit.table()
        for key, value in getattr(settings, section).model_dump().items():
            if value is not None:
                table.add(key, value)
        doc.add(section, table)
    if settings.regions:
        regions = tomlkit.table(is_super_table=True)
        for key, region in settings.regions.items():
            entry = tomlkit.table()
            entry.add('name', region.name)
            entry.add('description', region.description)
            for side in ('north', 'south', 'east', 'west'):
                entry.add(side, getattr(region.bounds, side))
            entry.add('min_zoom', region.min_zoom)
            entry.add('max_zoom', region.max_zoom)
            regions.add(key, entry)
        doc.add('regions', regions)
    p.write_text(tomlkit.dumps(doc), encoding='utf-8')
    return p
