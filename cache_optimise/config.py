"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Constructor arguments
  2. Environment variables   (CACHE_OPTIMISE_DOMAIN=example.com)
  3. .env file               (in the working directory)
  4. cache-optimise.yaml     (in the working directory)
  5. Hardcoded defaults

Only ``domain`` is required. The settings object is frozen: it is built once
at start-up and handed to every component.
"""

import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

CONFIG_FILE_NAME = "cache-optimise.yaml"


def _find_config_file() -> Optional[str]:
    """Return the path of cache-optimise.yaml in the working directory, or None."""
    path = Path(CONFIG_FILE_NAME)
    if path.exists():
        return str(path)
    return None


class OptimiseSettings(BaseSettings):
    """Every option the optimiser recognises.

    - domain (str): Domain whose cache entries are processed, e.g. ``example.com``.
    - host (str): Host handed to the render collaborator; defaults to ``domain``.
    - site_root (Path): Filesystem root that stylesheet hrefs resolve against.
    - cache_root (Path): Root of the page cache store.
    - write_log / status_file: Run log switch and its target file.
    - footer_comment (str): Footprint marker text appended to processed pages.
    - placeholder_image, logo_*_selector, logo_*_dataimg, brand_images:
      Optional data URI substitutions for ``<img>`` sources.
    - preload_delay (int|None): Milliseconds before the lazy-load library is forced.
    """

    model_config = SettingsConfigDict(
        env_prefix="CACHE_OPTIMISE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    domain: str
    host: str = ""
    site_root: Path = Path("/mnt/cache/wordpress")
    cache_root: Path = Path("/mnt/cache/wp-content/cache/wp-rocket")

    write_log: bool = False
    status_file: Optional[Path] = None
    debug: bool = False

    footer_comment: str = "cache-optimise"

    placeholder_image: Optional[str] = None
    logo_dark_selector: Optional[str] = None
    logo_dark_dataimg: Optional[str] = None
    logo_light_selector: Optional[str] = None
    logo_light_dataimg: Optional[str] = None
    brand_images: Dict[str, str] = Field(default_factory=dict)
    preload_delay: Optional[int] = None

    lockfile: Path = Path(tempfile.gettempdir()) / "cache-optimise.lock"
    temp_prefix: str = "TMPLC"
    supplemental_css: Optional[Path] = None

    render_command: List[str] = Field(default_factory=lambda: ["node", "page-local.js"])
    render_timeout: float = 30.0
    purge_command: List[str] = Field(default_factory=lambda: ["purgecss"])
    purge_timeout: float = 120.0

    script_allowlist: List[str] = Field(default_factory=lambda: ["jquery.min.js"])
    lazyload_script: str = "lazyload.min.js"

    gzip_variant: bool = True
    gzip_level: int = Field(default=3, ge=1, le=9)

    minify_html: bool = False
    htmlmin_opts: Dict[str, Any] = Field(default_factory=dict)
    minify_inline_scripts: bool = False

    @field_validator("domain")
    @classmethod
    def _strip_domain(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("domain must not be empty")
        return value

    @field_validator("preload_delay")
    @classmethod
    def _non_negative_delay(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 0:
            raise ValueError("preload_delay must be >= 0")
        return value

    @model_validator(mode="after")
    def _fill_derived_defaults(self) -> "OptimiseSettings":
        # Frozen models need object.__setattr__ for derived defaults.
        if not self.host:
            object.__setattr__(self, "host", self.domain)
        if self.status_file is None:
            object.__setattr__(self, "status_file", self.cache_root / "statusfile.txt")
        return self

    def brand_image_substitutions(self) -> List[Tuple[str, str]]:
        """Return (selector, data URI) pairs: dark logo, light logo, then ``brand_images``."""
        pairs: List[Tuple[str, str]] = []
        if self.logo_dark_selector and self.logo_dark_dataimg:
            pairs.append((self.logo_dark_selector, self.logo_dark_dataimg))
        if self.logo_light_selector and self.logo_light_dataimg:
            pairs.append((self.logo_light_selector, self.logo_light_dataimg))
        pairs.extend(self.brand_images.items())
        return pairs

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type,
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )
