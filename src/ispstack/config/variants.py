# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/config/variants.py
#
# Everything that differed between the old per-product installer copies lives
# here as data: PHP version, application repository, per-codename package
# sources and package sets.

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .models import Component, DesiredConfig, HostPaths
from ..errors import InputError


SUPPORTED_CODENAMES: Tuple[str, ...] = ("focal", "jammy", "noble")


@dataclass(frozen=True)
class FlavorSpec:
    name: str
    php_version: str
    app_repo: str
    needs_ioncube: bool = False


FLAVORS: Dict[str, FlavorSpec] = {
    "simpleisp": FlavorSpec(
        name="simpleisp",
        php_version="7.4",
        app_repo="https://github.com/simpleisp/radius.git",
    ),
    "simplespot": FlavorSpec(
        name="simplespot",
        php_version="8.2",
        app_repo="https://github.com/simpleisp/simplespot.git",
        needs_ioncube=True,
    ),
}


@dataclass(frozen=True)
class RepositorySpec:
    """
    A signed package source.

    kind:
      - "ppa":    add-apt-repository <ppa>
      - "source": key downloaded to key_path, source text written to source_path
    """
    name: str
    kind: str
    ppa: Optional[str] = None
    key_url: Optional[str] = None
    key_path: Optional[Path] = None
    dearmor: bool = False
    source_path: Optional[Path] = None
    source_text: Optional[str] = None
    pin_path: Optional[Path] = None
    pin_text: Optional[str] = None


ONDREJ_KEY_FINGERPRINT = "B8DC7E53946656EFBCE4C1DD71DAEAAB4AD4CAB6"
NETWORKRADIUS_KEY_URL = "https://packages.networkradius.com/pgp/packages%40networkradius.com"
IONCUBE_URL = "https://downloads.ioncube.com/loader_downloads/ioncube_loaders_lin_x86-64.zip"
COMPOSER_INSTALLER_URL = "https://getcomposer.org/installer"
OPENVPN_INSTALLER_URL = "https://raw.githubusercontent.com/simpleisp/bash/main/openvpn.sh"


def require_supported(codename: Optional[str]) -> str:
    if not codename or codename not in SUPPORTED_CODENAMES:
        raise InputError(
            f"Unsupported Ubuntu codename: {codename or '<unknown>'} "
            f"(supported: {', '.join(SUPPORTED_CODENAMES)})"
        )
    return codename


def php_repository(codename: str, paths: HostPaths) -> RepositorySpec:
    codename = require_supported(codename)
    if codename == "noble":
        key_path = paths.apt_keyrings / "ondrej-ubuntu-php.gpg"
        return RepositorySpec(
            name="ondrej-php",
            kind="source",
            key_url=f"https://keyserver.ubuntu.com/pks/lookup?op=get&search=0x{ONDREJ_KEY_FINGERPRINT}",
            key_path=key_path,
            dearmor=True,
            source_path=paths.apt_sources / "ondrej-ubuntu-php-noble.sources",
            source_text=(
                "Types: deb\n"
                "URIs: https://ppa.launchpadcontent.net/ondrej/php/ubuntu/\n"
                "Suites: noble\n"
                "Components: main\n"
                f"Signed-By: {key_path}\n"
            ),
        )
    return RepositorySpec(name="ondrej-php", kind="ppa", ppa="ppa:ondrej/php")


def radius_repository(codename: str, paths: HostPaths) -> RepositorySpec:
    codename = require_supported(codename)
    key_path = paths.apt_keyrings / "packages.networkradius.com.asc"
    url = f"http://packages.networkradius.com/freeradius-3.2/ubuntu/{codename} {codename} main"
    return RepositorySpec(
        name="networkradius",
        kind="source",
        key_url=NETWORKRADIUS_KEY_URL,
        key_path=key_path,
        source_path=paths.apt_sources / "networkradius.list",
        source_text=f"deb [arch=amd64 signed-by={key_path}] {url}\n",
        pin_path=paths.apt_preferences / "networkradius",
        pin_text='Package: /freeradius/\nPin: origin "packages.networkradius.com"\nPin-Priority: 999\n',
    )


# ---------------------------------------------------------------------
# Package sets per component
# ---------------------------------------------------------------------

_PHP_EXTENSIONS = (
    "fpm", "mysql", "cli", "curl", "zip", "common", "gd", "mbstring", "xml",
    "dev", "bcmath", "intl", "redis", "imap",
)

BASE_PACKAGES: Tuple[str, ...] = (
    "git", "unzip", "curl", "wget", "software-properties-common",
    "apt-transport-https", "ca-certificates", "gnupg", "lsb-release",
)


def php_packages(php_version: str) -> List[str]:
    pkgs = [f"php{php_version}-{ext}" for ext in _PHP_EXTENSIONS]
    # json/tokenizer/ctype/fileinfo are built into PHP 8.x
    if php_version.startswith("7."):
        pkgs += [f"php{php_version}-{ext}" for ext in ("json", "tokenizer", "ctype", "fileinfo")]
    return pkgs


COMPONENT_PACKAGES: Dict[Component, Tuple[str, ...]] = {
    Component.DATABASE: ("mariadb-server", "mariadb-client"),
    Component.CACHE: ("redis-server",),
    Component.RADIUS: ("freeradius", "freeradius-mysql", "freeradius-utils"),
    Component.SUPERVISOR: ("supervisor",),
    Component.VPN: ("openvpn", "easy-rsa"),
    Component.TLS: ("python3-certbot-nginx",),
    Component.FIREWALL: ("ufw",),
}

# A component is only meaningful together with the ones it needs.
COMPONENT_REQUIRES: Dict[Component, Tuple[Component, ...]] = {
    Component.WEB: (Component.DATABASE,),
    Component.RADIUS: (Component.DATABASE,),
    Component.SUPERVISOR: (Component.WEB,),
    Component.TLS: (Component.WEB,),
}

COMPONENT_SERVICES: Dict[Component, Tuple[str, ...]] = {
    Component.DATABASE: ("mariadb",),
    Component.CACHE: ("redis-server",),
    Component.RADIUS: ("freeradius",),
    Component.SUPERVISOR: ("supervisor",),
    Component.VPN: ("openvpn",),
}


FIREWALL_RULES: Tuple[str, ...] = (
    "ssh",
    "http",
    "https",
    "9080/tcp",
    "1194/tcp",
    "1812:1813/udp",
)


@dataclass(frozen=True)
class Variant:
    """
    Fully resolved variant for one run: flavour + codename + overrides.
    """
    codename: str
    flavor: FlavorSpec
    php_version: str
    app_repo: str
    app_branch: str
    components: Tuple[Component, ...] = field(default_factory=tuple)

    @property
    def php_fpm_service(self) -> str:
        return f"php{self.php_version}-fpm"

    @property
    def php_fpm_socket(self) -> str:
        return f"/run/php/php{self.php_version}-fpm.sock"

    def packages_for(self, component: Component) -> List[str]:
        if component is Component.WEB:
            return ["nginx-full", *php_packages(self.php_version), *BASE_PACKAGES]
        return list(COMPONENT_PACKAGES.get(component, ()))

    def services(self) -> List[str]:
        out: List[str] = []
        for comp in self.components:
            if comp is Component.WEB:
                out += ["nginx", self.php_fpm_service]
            out += list(COMPONENT_SERVICES.get(comp, ()))
        return out


def resolve_variant(desired: DesiredConfig, detected_codename: str) -> Variant:
    """
    Combine the desired config with the detected codename.
    Raises InputError for anything that cannot be planned.
    """
    codename = require_supported(desired.codename or detected_codename)

    flavor = FLAVORS.get(desired.flavor)
    if flavor is None:
        raise InputError(f"Unknown flavour: {desired.flavor}")

    selected = set(desired.components)
    if not selected:
        raise InputError("No components selected")
    for comp in desired.components:
        missing = [r.value for r in COMPONENT_REQUIRES.get(comp, ()) if r not in selected]
        if missing:
            raise InputError(f"Component '{comp.value}' requires: {', '.join(missing)}")

    if Component.TLS in selected and not desired.email:
        raise InputError("Component 'tls' requires an email address for certificate registration")

    # Keep a stable order regardless of how the config listed them
    ordered = tuple(c for c in Component if c in selected)

    return Variant(
        codename=codename,
        flavor=flavor,
        php_version=desired.php_version or flavor.php_version,
        app_repo=desired.app_repo or flavor.app_repo,
        app_branch=desired.app_branch,
        components=ordered,
    )
