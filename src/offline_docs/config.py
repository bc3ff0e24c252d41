"""Runtime settings and the static docset catalog."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from offline_docs.models import DocsetConfig

logger = logging.getLogger(__name__)

VERSION = "0.1.0"
DEFAULT_CATALOG_PATH = Path(__file__).parent / "docsets.yaml"
DEFAULT_USER_AGENT = f"offline-docs/{VERSION} (Documentation Scraper)"


def _default_data_dir() -> Path:
    return Path.home() / ".docu"


@dataclass
class Settings:
    """Settings shared by the fetch and search paths."""

    data_dir: Path = field(default_factory=_default_data_dir)
    request_timeout: float = 10.0
    max_concurrency: int = 4
    user_agent: str = DEFAULT_USER_AGENT
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.request_timeout <= 0:
            msg = "Request timeout must be positive"
            raise ValueError(msg)
        if self.max_concurrency < 1:
            msg = "Max concurrency must be at least 1"
            raise ValueError(msg)

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from DOCU_* environment variables.

        Returns:
            Settings instance, with defaults for unset variables.
        """
        data_dir = os.environ.get("DOCU_HOME")
        return cls(
            data_dir=Path(data_dir).expanduser() if data_dir else _default_data_dir(),
            request_timeout=float(os.environ.get("DOCU_REQUEST_TIMEOUT", "10")),
            max_concurrency=int(os.environ.get("DOCU_MAX_CONCURRENCY", "4")),
            user_agent=os.environ.get("DOCU_USER_AGENT", DEFAULT_USER_AGENT),
            log_level=os.environ.get("DOCU_LOG_LEVEL", "INFO"),
        )


def load_docset_catalog(path: Path | None = None) -> dict[str, DocsetConfig]:
    """Load docset definitions from a YAML catalog.

    Args:
        path: Catalog file. Defaults to the catalog shipped with the package.

    Returns:
        Mapping of docset name to definition, in file order.

    Raises:
        ValueError: If the catalog is malformed or defines a name twice.
    """
    catalog_path = path or DEFAULT_CATALOG_PATH
    with catalog_path.open(encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    entries = data.get("docsets") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        msg = f"Catalog {catalog_path} must contain a 'docsets' list"
        raise ValueError(msg)

    catalog: dict[str, DocsetConfig] = {}
    for entry in entries:
        try:
            docset = DocsetConfig.from_dict(entry)
        except KeyError as e:
            msg = f"Catalog entry missing field {e} in {catalog_path}"
            raise ValueError(msg) from e
        if docset.name in catalog:
            msg = f"Duplicate docset name in catalog: {docset.name}"
            raise ValueError(msg)
        catalog[docset.name] = docset

    logger.debug("Loaded %d docsets from %s", len(catalog), catalog_path)
    return catalog
