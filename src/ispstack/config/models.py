# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/config/models.py

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


class Component(str, Enum):
    WEB = "web"                  # nginx + php-fpm + application code
    DATABASE = "database"        # mariadb
    CACHE = "cache"              # redis
    RADIUS = "radius"            # freeradius + sql module
    SUPERVISOR = "supervisor"    # queue workers
    VPN = "vpn"                  # openvpn
    TLS = "tls"                  # certbot
    FIREWALL = "firewall"        # ufw


ALL_COMPONENTS: List[Component] = list(Component)


class CleanupPolicy(BaseModel):
    """
    What survives a cleanup, and when the next run consumes the cleanup marker.
    """
    consume_marker: Literal["on_detection", "after_success"] = "on_detection"
    preserve_credentials: bool = True
    preserve_certificates: bool = True
    preserve_ioncube: bool = True


class HostPaths(BaseModel):
    """
    Fixed filesystem locations on the provisioned host.
    """
    # Reconciler state
    credential_file: Path = Path("/root/db.txt")
    cleanup_marker: Path = Path("/root/.simpleisp_cleanup_done")
    cleanup_script: Path = Path("/root/cleanup.sh")
    lock_file: Path = Path("/run/ispstack.lock")
    os_release: Path = Path("/etc/os-release")

    # Application
    web_root: Path = Path("/var/www/html")
    composer_bin: Path = Path("/usr/local/bin/composer")

    # Service configuration
    nginx_site: Path = Path("/etc/nginx/sites-available/default")
    nginx_site_enabled: Path = Path("/etc/nginx/sites-enabled/default")
    freeradius_dir: Path = Path("/etc/freeradius")
    supervisor_conf_dir: Path = Path("/etc/supervisor/conf.d")
    mariadb_conf_dir: Path = Path("/etc/mysql/mariadb.conf.d")
    php_conf_dir: Path = Path("/etc/php")
    ioncube_dir: Path = Path("/usr/local/ioncube")
    openvpn_dir: Path = Path("/etc/openvpn")
    sudoers_dir: Path = Path("/etc/sudoers.d")
    cron_dir: Path = Path("/etc/cron.d")
    letsencrypt_live: Path = Path("/etc/letsencrypt/live")

    # Package sources
    apt_keyrings: Path = Path("/etc/apt/keyrings")
    apt_sources: Path = Path("/etc/apt/sources.list.d")
    apt_preferences: Path = Path("/etc/apt/preferences.d")

    # Data removed by cleanup
    redis_data: Path = Path("/var/lib/redis")

    def under(self, root: Path) -> "HostPaths":
        """
        Re-root every path below *root*. Used by tests and for staging trees.
        """
        root = Path(root)
        update = {}
        for name in type(self).model_fields:
            p = getattr(self, name)
            update[name] = root / p.relative_to(p.anchor)
        return self.model_copy(update=update)

    # -----------------------
    # Derived locations
    # -----------------------
    @property
    def radius_sql_module(self) -> Path:
        return self.freeradius_dir / "mods-available" / "sql"

    @property
    def radius_sql_enabled(self) -> Path:
        return self.freeradius_dir / "mods-enabled" / "sql"

    @property
    def radius_buffered_site(self) -> Path:
        return self.freeradius_dir / "sites-available" / "buffered-sql"

    @property
    def radius_buffered_enabled(self) -> Path:
        return self.freeradius_dir / "sites-enabled" / "buffered-sql"

    @property
    def app_env(self) -> Path:
        return self.web_root / ".env"

    @property
    def supervisor_worker(self) -> Path:
        return self.supervisor_conf_dir / "queue-worker.conf"

    @property
    def mariadb_server_conf(self) -> Path:
        return self.mariadb_conf_dir / "60-ispstack.cnf"

    @property
    def sudoers_file(self) -> Path:
        return self.sudoers_dir / "ispstack"

    @property
    def scheduler_cron(self) -> Path:
        return self.cron_dir / "laravel-scheduler"

    def certificate_dir(self, domain: str) -> Path:
        return self.letsencrypt_live / domain

    def ioncube_loader(self, php_version: str) -> Path:
        return self.ioncube_dir / f"ioncube_loader_lin_{php_version}.so"

    def ioncube_ini(self, php_version: str) -> Path:
        return self.php_conf_dir / php_version / "mods-available" / "ioncube.ini"

    def ioncube_links(self, php_version: str) -> List[Path]:
        base = self.php_conf_dir / php_version
        return [
            base / "cli" / "conf.d" / "00-ioncube.ini",
            base / "fpm" / "conf.d" / "00-ioncube.ini",
        ]


class DesiredConfig(BaseModel):
    domain: str
    email: Optional[str] = None
    codename: Optional[str] = None                   # None -> detected from the host
    flavor: Literal["simpleisp", "simplespot"] = "simpleisp"
    components: List[Component] = Field(default_factory=lambda: list(ALL_COMPONENTS))

    # Variant overrides (defaults come from the flavour table)
    php_version: Optional[str] = None
    app_repo: Optional[str] = None
    app_branch: str = "main"

    db_name: str = "radius"
    web_user: str = "www-data"
    web_group: str = "www-data"
    radius_group: str = "freerad"
    queue_workers: int = 5

    paths: HostPaths = Field(default_factory=HostPaths)
    cleanup: CleanupPolicy = Field(default_factory=CleanupPolicy)

    @field_validator("domain")
    @classmethod
    def _domain_is_hostname(cls, v: str) -> str:
        v = (v or "").strip()
        if not v or any(c.isspace() for c in v) or "/" in v:
            raise ValueError("domain must be a bare host name, e.g. billing.example.com")
        return v

    @field_validator("codename")
    @classmethod
    def _normalize_codename(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip().lower()
        return v or None

    def has(self, component: Component) -> bool:
        return component in self.components
