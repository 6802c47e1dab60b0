# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/deploy/planner.py

from __future__ import annotations

import logging
import shlex
import socket
from collections import deque
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .cleanup import build_cleanup_plan, cleanup_variables
from .models import Plan, Step, StepKind
from ..config.models import CleanupPolicy, Component, DesiredConfig, HostPaths
from ..config.variants import (
    COMPONENT_SERVICES,
    COMPOSER_INSTALLER_URL,
    FIREWALL_RULES,
    IONCUBE_URL,
    OPENVPN_INSTALLER_URL,
    Variant,
    php_repository,
    radius_repository,
    resolve_variant,
)
from ..errors import CyclicDependencyError, InputError, UnknownDependencyError
from ..state.models import HostState

# Observer bits
from ..observers.dispatcher import EventBus
from ..observers.events import PlanComputed, PlanFailed, new_ctx, stamp

log = logging.getLogger("ispstack")

RADIUS_SELFTEST_OK = "Configuration appears to be OK"


def _validate_dependencies(steps: Sequence[Step]) -> None:
    ids: Set[str] = set()
    for s in steps:
        if s.id in ids:
            raise InputError(f"Duplicate step id '{s.id}'")
        ids.add(s.id)
    for s in steps:
        for d in s.depends_on:
            if d not in ids:
                raise UnknownDependencyError(f"Step '{s.id}' depends on unknown step '{d}'")


def order_steps(steps: Sequence[Step]) -> List[Step]:
    """
    Stable topological sort on depends_on. Among ready steps the one emitted
    first wins, so an already ordered list comes back unchanged.
    """
    _validate_dependencies(steps)

    position: Dict[str, int] = {s.id: i for i, s in enumerate(steps)}
    indeg: Dict[str, int] = {s.id: len(set(s.depends_on)) for s in steps}
    dependents: Dict[str, List[str]] = {s.id: [] for s in steps}
    for s in steps:
        for d in set(s.depends_on):
            dependents[d].append(s.id)

    queue = deque(sorted((s.id for s in steps if indeg[s.id] == 0), key=position.get))
    order: List[Step] = []

    while queue:
        n = queue.popleft()
        order.append(steps[position[n]])
        for m in dependents[n]:
            indeg[m] -= 1
            if indeg[m] == 0:
                queue.append(m)
                queue = deque(sorted(queue, key=position.get))  # deterministic

    if len(order) != len(steps):
        stuck = sorted((sid for sid, deg in indeg.items() if deg > 0), key=position.get)
        raise CyclicDependencyError(f"Cyclic dependency detected among steps: {', '.join(stuck)}")
    return order


# Step-id prefixes that exist only while their component is wanted. A missing
# dependency on one of these is dropped; any other missing id is an error.
_COMPONENT_PREFIXES: Dict[str, Component] = {
    "repo.php": Component.WEB,
    "php": Component.WEB,
    "php-fpm": Component.WEB,
    "ioncube": Component.WEB,
    "nginx": Component.WEB,
    "sudoers": Component.WEB,
    "app": Component.WEB,
    "composer": Component.WEB,
    "cron": Component.WEB,
    "repo.radius": Component.RADIUS,
    "radius": Component.RADIUS,
    "mariadb": Component.DATABASE,
    "database": Component.DATABASE,
    "credentials": Component.DATABASE,
    "redis": Component.CACHE,
    "supervisor": Component.SUPERVISOR,
    "openvpn": Component.VPN,
    "firewall": Component.FIREWALL,
    "tls": Component.TLS,
}


def _owning_component(step_id: str) -> Optional[Component]:
    if step_id in _COMPONENT_PREFIXES:
        return _COMPONENT_PREFIXES[step_id]
    head, _, tail = step_id.partition(".")
    if head == "packages":
        try:
            return Component(tail)
        except ValueError:
            return None
    return _COMPONENT_PREFIXES.get(head)


class _Emitter:
    """
    Collects steps in emission order. Dependencies are resolved once every
    step exists; see resolve().
    """

    def __init__(self) -> None:
        self.steps: List[Step] = []
        self._ids: Set[str] = set()

    def __contains__(self, step_id: str) -> bool:
        return step_id in self._ids

    def add(
        self,
        step_id: str,
        kind: StepKind,
        target: Any = "",
        *,
        after: Sequence[str] = (),
        description: str = "",
        **params: Any,
    ) -> str:
        self.steps.append(Step(step_id, kind, str(target), params, list(after), description))
        self._ids.add(step_id)
        return step_id

    def resolve(self, may_be_absent: Callable[[str], bool]) -> List[Step]:
        """
        Drop `after` and `only_if_changed` ids that were never emitted when
        may_be_absent() allows it; raise UnknownDependencyError otherwise.
        """
        def keep(step: Step, ids: Sequence[str]) -> List[str]:
            kept = []
            for d in ids:
                if d in self._ids:
                    kept.append(d)
                elif not may_be_absent(d):
                    raise UnknownDependencyError(f"Step '{step.id}' depends on unknown step '{d}'")
            return kept

        resolved = []
        for s in self.steps:
            params = dict(s.params)
            if "only_if_changed" in params:
                params["only_if_changed"] = keep(s, params["only_if_changed"])
            resolved.append(Step(s.id, s.kind, s.target, params, keep(s, s.depends_on), s.description))
        return resolved


def _sh(script: str) -> List[str]:
    return ["sh", "-c", script]


class PlanBuilder:
    """
    DesiredConfig + HostState -> Plan.

    Everything that can make the plan impossible (codename, components,
    missing fields) is checked here, before a single step exists.
    """

    def __init__(
        self,
        paths: Optional[HostPaths] = None,
        policy: Optional[CleanupPolicy] = None,
        *,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
        hostname: Optional[str] = None,
    ):
        self.paths = paths
        self.policy = policy
        self.bus = bus
        self.run_ctx = run_ctx
        self.hostname = hostname or socket.gethostname()

    def build(self, desired: DesiredConfig, host_state: HostState) -> Plan:
        ctx = self.run_ctx or new_ctx(host=self.hostname, codename=desired.codename or host_state.os_codename)
        try:
            variant = resolve_variant(desired, host_state.os_codename)
            steps = self._emit(desired, host_state, variant)
            plan = Plan(
                steps=order_steps(steps),
                codename=variant.codename,
                force_reconfigure=host_state.cleaned_up,
            )
            log.debug("Plan for %s (%s): %s", desired.domain, variant.codename, ", ".join(plan.ids()))
            if self.bus:
                self.bus.emit(PlanComputed(order=plan.ids(), force_reconfigure=plan.force_reconfigure, **stamp(ctx)))
            return plan
        except Exception as e:
            if self.bus:
                self.bus.emit(PlanFailed(error=str(e), **stamp(ctx)))
            raise

    # ------------------------------------------------------------------
    # Emission, in phase order
    # ------------------------------------------------------------------
    def _emit(self, desired: DesiredConfig, host_state: HostState, v: Variant) -> List[Step]:
        p = self.paths or desired.paths
        policy = self.policy or desired.cleanup
        e = _Emitter()
        has = desired.has

        if host_state.cleaned_up and policy.consume_marker == "on_detection":
            e.add("marker.consume", StepKind.CONSUME_MARKER, p.cleanup_marker,
                  description="Consume cleanup marker")

        self._repositories(e, desired, v, p)
        self._packages(e, desired, host_state, v, p)
        if has(Component.DATABASE):
            self._database(e, desired, p)
        if has(Component.WEB):
            self._web(e, desired, host_state, v, p)
            self._application(e, desired, v, p)
        if has(Component.RADIUS):
            self._radius(e, desired, p)
        if has(Component.SUPERVISOR):
            self._supervisor(e, desired, v, p)
        if has(Component.CACHE):
            self._services(e, "redis", COMPONENT_SERVICES[Component.CACHE][0], after=["packages.cache"])
        if has(Component.VPN):
            self._vpn(e, p)
        if has(Component.FIREWALL):
            e.add("firewall.rules", StepKind.FIREWALL, "ufw",
                  after=["packages.firewall", "nginx.restart"],
                  description="Open firewall ports and enable ufw",
                  rules=list(FIREWALL_RULES))
        if has(Component.TLS):
            self._tls(e, desired, v, p)

        self._finish(e, desired, p, policy, host_state)

        def may_be_absent(step_id: str) -> bool:
            if step_id.startswith("ioncube.") and not v.flavor.needs_ioncube:
                return True
            comp = _owning_component(step_id)
            return comp is not None and comp not in v.components

        return e.resolve(may_be_absent)

    def _repositories(self, e: _Emitter, desired: DesiredConfig, v: Variant, p: HostPaths) -> None:
        if desired.has(Component.WEB):
            e.add("repo.php", StepKind.CONFIGURE_REPOSITORY, "ondrej-php",
                  description="Add PHP repository",
                  spec=php_repository(v.codename, p))
        if desired.has(Component.RADIUS):
            e.add("repo.radius", StepKind.CONFIGURE_REPOSITORY, "networkradius",
                  description="Add FreeRADIUS repository",
                  spec=radius_repository(v.codename, p))
        e.add("apt.refresh", StepKind.REFRESH_INDEX, "apt",
              after=["repo.php", "repo.radius"],
              description="Refresh package index")

    def _packages(self, e: _Emitter, desired: DesiredConfig, host_state: HostState, v: Variant, p: HostPaths) -> None:
        for comp in v.components:
            e.add(f"packages.{comp.value}", StepKind.INSTALL_PACKAGE, comp.value,
                  after=["apt.refresh"],
                  description=f"Install {comp.value} packages",
                  names=v.packages_for(comp),
                  force_reconfigure=host_state.cleaned_up)

        if not desired.has(Component.WEB):
            return

        php_bin = f"/usr/bin/php{v.php_version}"
        e.add("php.default", StepKind.RUN_COMMAND, "php",
              after=["packages.web"],
              description=f"Make PHP {v.php_version} the default php",
              command=["update-alternatives", "--set", "php", php_bin],
              unless=_sh(f'[ "$(readlink -f /etc/alternatives/php)" = {shlex.quote(php_bin)} ]'))

        if v.flavor.needs_ioncube:
            loader = p.ioncube_loader(v.php_version)
            e.add("ioncube.install", StepKind.RUN_COMMAND, loader,
                  after=["packages.web"],
                  description="Install ionCube loader",
                  command=_sh(
                      "set -e; cd /tmp; "
                      f"wget -q {shlex.quote(IONCUBE_URL)} -O ioncube.zip; "
                      "unzip -o -q ioncube.zip; "
                      f"mkdir -p {shlex.quote(str(p.ioncube_dir))}; "
                      f"cp ioncube/ioncube_loader_lin_{v.php_version}.so {shlex.quote(str(loader))}; "
                      "rm -rf ioncube ioncube.zip"
                  ),
                  creates=str(loader),
                  network=True)
            e.add("ioncube.ini", StepKind.RENDER_TEMPLATE, p.ioncube_ini(v.php_version),
                  after=["ioncube.install"],
                  description="Render ionCube ini",
                  template="ioncube.ini.j2",
                  variables={"loader_path": str(loader)},
                  mode=0o644)
            e.add("ioncube.enable", StepKind.ENABLE_MODULE, "ioncube",
                  after=["ioncube.ini"],
                  description="Enable ionCube for CLI and FPM",
                  source=str(p.ioncube_ini(v.php_version)),
                  links=[str(link) for link in p.ioncube_links(v.php_version)])

    def _database(self, e: _Emitter, desired: DesiredConfig, p: HostPaths) -> None:
        e.add("mariadb.config", StepKind.RENDER_TEMPLATE, p.mariadb_server_conf,
              after=["packages.database"],
              description="Render MariaDB server config",
              template="mariadb-server.cnf.j2",
              variables={"bind_address": "0.0.0.0"},
              mode=0o644)
        self._services(e, "mariadb", "mariadb", after=["packages.database"], triggers=["mariadb.config"])

        e.add("credentials.obtain", StepKind.OBTAIN_CREDENTIALS, p.credential_file,
              description="Obtain database credentials")

        hosts = ["localhost", self.hostname]
        e.add("database.secure", StepKind.DATABASE, "mysql",
              after=["mariadb.restart"],
              description="Remove anonymous users, remote root and the test database",
              statements=[f"DROP USER IF EXISTS ''@'{h}'" for h in hosts] + [
                  f"DROP USER IF EXISTS 'root'@'{self.hostname}'",
                  "DROP USER IF EXISTS 'root'@'%'",
                  "DROP DATABASE IF EXISTS test",
                  "FLUSH PRIVILEGES",
              ],
              probe=(
                  "SELECT (SELECT COUNT(*) FROM mysql.user WHERE User='' "
                  "OR (User='root' AND Host NOT IN ('localhost','127.0.0.1','::1'))) + "
                  "(SELECT COUNT(*) FROM information_schema.SCHEMATA WHERE SCHEMA_NAME='test')"
              ),
              expect="0")
        e.add("database.create", StepKind.DATABASE, "mysql",
              after=["database.secure", "credentials.obtain"],
              description="Create application database",
              statements=[
                  "CREATE DATABASE IF NOT EXISTS `{db_name}` CHARACTER SET utf8mb4 COLLATE utf8mb4_general_ci",
              ],
              probe="SELECT COUNT(*) FROM information_schema.SCHEMATA WHERE SCHEMA_NAME='{db_name}'",
              expect="1",
              credentials=True)
        e.add("database.grant", StepKind.DATABASE, "mysql",
              after=["database.create", "credentials.obtain"],
              description="Create application user and grant privileges",
              statements=[
                  stmt
                  for host in ("localhost", "%")
                  for stmt in (
                      f"CREATE USER IF NOT EXISTS '{{db_user}}'@'{host}' IDENTIFIED BY '{{db_password}}'",
                      f"GRANT ALL PRIVILEGES ON `{{db_name}}`.* TO '{{db_user}}'@'{host}'",
                  )
              ] + ["FLUSH PRIVILEGES"],
              probe=(
                  "SELECT COUNT(*) FROM mysql.db "
                  "WHERE User='{db_user}' AND Db='{db_name}' AND Host IN ('localhost','%')"
              ),
              expect="2",
              credentials=True)

    def _web(self, e: _Emitter, desired: DesiredConfig, host_state: HostState, v: Variant, p: HostPaths) -> None:
        site_vars = {
            "domain": desired.domain,
            "web_root": str(p.web_root),
            "php_fpm_socket": v.php_fpm_socket,
            "certificate_dir": str(p.certificate_dir(desired.domain)),
        }
        e.add("nginx.site", StepKind.RENDER_TEMPLATE, p.nginx_site,
              after=["packages.web"],
              description="Render nginx site",
              template="nginx-site.conf.j2",
              variables={
                  **site_vars,
                  "tls_enabled": desired.has(Component.TLS) and host_state.has_certificate(desired.domain),
              },
              mode=0o644)
        e.add("nginx.site-enable", StepKind.ENABLE_MODULE, "nginx-site",
              after=["nginx.site"],
              description="Enable nginx site",
              source=str(p.nginx_site),
              links=[str(p.nginx_site_enabled)])

        self._services(e, "php-fpm", v.php_fpm_service,
                       after=["packages.web", "ioncube.enable"],
                       triggers=["php.default", "ioncube.ini", "ioncube.enable"])
        self._services(e, "nginx", "nginx",
                       after=["nginx.site-enable", "php-fpm.start"],
                       triggers=["nginx.site", "nginx.site-enable"])

        services = [s for s in v.services() if s != "mariadb"]
        e.add("sudoers", StepKind.RENDER_TEMPLATE, p.sudoers_file,
              after=["packages.web"],
              description="Render sudoers entries for the web user",
              template="sudoers.j2",
              variables={"web_user": desired.web_user, "web_root": str(p.web_root), "services": services},
              mode=0o440)

    def _application(self, e: _Emitter, desired: DesiredConfig, v: Variant, p: HostPaths) -> None:
        root = str(p.web_root)
        php_bin = f"/usr/bin/php{v.php_version}"
        composer_env = {"COMPOSER_ALLOW_SUPERUSER": "1", "COMPOSER_HOME": "/root/.config/composer"}

        e.add("app.source", StepKind.RUN_COMMAND, root,
              after=["packages.web"],
              description="Clone application source",
              command=_sh(
                  f"rm -rf {shlex.quote(root)} && git clone --depth 1 "
                  f"--branch {shlex.quote(v.app_branch)} {shlex.quote(v.app_repo)} {shlex.quote(root)}"
              ),
              creates=str(p.web_root / "artisan"),
              network=True)
        e.add("composer.setup", StepKind.RUN_COMMAND, p.composer_bin,
              after=["php.default"],
              description="Install composer",
              command=_sh(
                  f"curl -fsSL {shlex.quote(COMPOSER_INSTALLER_URL)} | {php_bin} -- "
                  f"--install-dir={shlex.quote(str(p.composer_bin.parent))} "
                  f"--filename={shlex.quote(p.composer_bin.name)}"
              ),
              creates=str(p.composer_bin),
              network=True)
        e.add("app.dependencies", StepKind.RUN_COMMAND, root,
              after=["app.source", "composer.setup", "ioncube.enable"],
              description="Install application dependencies",
              command=[php_bin, str(p.composer_bin), "install", "--no-dev", "--optimize-autoloader", "--no-interaction"],
              cwd=root,
              env=composer_env,
              creates=str(p.web_root / "vendor" / "autoload.php"),
              network=True)

        has_cache = desired.has(Component.CACHE)
        scheme = "https" if desired.has(Component.TLS) else "http"
        e.add("app.env", StepKind.RENDER_TEMPLATE, p.app_env,
              after=["app.source", "database.grant"],
              description="Render application .env",
              template="app.env.j2",
              variables={
                  "domain": desired.domain,
                  "app_url": f"{scheme}://{desired.domain}",
                  "cache_driver": "redis" if has_cache else "file",
                  "queue_connection": "redis" if has_cache else "database",
              },
              credentials=True,
              keep_existing=["APP_KEY"],
              mode=0o640)
        e.add("app.key", StepKind.RUN_COMMAND, root,
              after=["app.env", "app.dependencies"],
              description="Generate application key",
              command=[php_bin, "artisan", "key:generate", "--force"],
              cwd=root,
              unless=["grep", "-Eq", "^APP_KEY=.+", str(p.app_env)])
        e.add("app.migrate", StepKind.RUN_MIGRATION, root,
              after=["app.key", "app.dependencies", "database.grant"],
              description="Run database migrations",
              command=[php_bin, "artisan", "migrate", "--force"],
              cwd=root)
        e.add("app.seed", StepKind.RUN_COMMAND, root,
              after=["app.migrate"],
              description="Seed the database",
              command=[php_bin, "artisan", "db:seed", "--force"],
              cwd=root,
              only_if_changed=["app.migrate"])
        e.add("app.permissions", StepKind.SET_PERMISSION, root,
              after=["app.seed", "app.key"],
              description="Set web root ownership",
              user=desired.web_user,
              group=desired.web_group,
              writable=[str(p.web_root / "storage"), str(p.web_root / "bootstrap" / "cache")],
              mode=0o775)
        e.add("cron.scheduler", StepKind.RENDER_TEMPLATE, p.scheduler_cron,
              after=["app.dependencies"],
              description="Install scheduler cron entry",
              template="scheduler.cron.j2",
              variables={"web_user": desired.web_user, "web_root": root, "php_bin": php_bin},
              mode=0o644)

    def _radius(self, e: _Emitter, desired: DesiredConfig, p: HostPaths) -> None:
        e.add("radius.sql", StepKind.RENDER_TEMPLATE, p.radius_sql_module,
              after=["packages.radius", "database.grant"],
              description="Render RADIUS SQL module",
              template="radius-sql.j2",
              variables={},
              credentials=True,
              mode=0o640,
              group=desired.radius_group)
        e.add("radius.sql-enable", StepKind.ENABLE_MODULE, "sql",
              after=["radius.sql"],
              description="Enable RADIUS SQL module",
              source=str(p.radius_sql_module),
              links=[str(p.radius_sql_enabled)])
        e.add("radius.site-enable", StepKind.ENABLE_MODULE, "buffered-sql",
              after=["packages.radius"],
              description="Enable buffered-sql site",
              source=str(p.radius_buffered_site),
              links=[str(p.radius_buffered_enabled)])
        e.add("radius.selftest", StepKind.SELF_TEST, "freeradius",
              after=["radius.sql", "radius.sql-enable", "radius.site-enable"],
              description="Check FreeRADIUS configuration",
              command=["freeradius", "-XC"],
              expect=RADIUS_SELFTEST_OK)
        self._services(e, "radius", "freeradius",
                       after=["radius.selftest"],
                       triggers=["radius.sql", "radius.sql-enable", "radius.site-enable"])

    def _supervisor(self, e: _Emitter, desired: DesiredConfig, v: Variant, p: HostPaths) -> None:
        e.add("supervisor.worker", StepKind.RENDER_TEMPLATE, p.supervisor_worker,
              after=["packages.supervisor", "app.dependencies", "app.env"],
              description="Render queue worker program",
              template="supervisor-worker.conf.j2",
              variables={
                  "web_root": str(p.web_root),
                  "web_user": desired.web_user,
                  "queue_workers": desired.queue_workers,
                  "php_bin": f"/usr/bin/php{v.php_version}",
              },
              mode=0o644)
        self._services(e, "supervisor", "supervisor",
                       after=["supervisor.worker"],
                       triggers=["supervisor.worker"])

    def _vpn(self, e: _Emitter, p: HostPaths) -> None:
        e.add("openvpn.install", StepKind.RUN_COMMAND, p.openvpn_dir,
              after=["packages.vpn"],
              description="Configure OpenVPN server",
              command=_sh(
                  f"set -e; curl -fsSL {shlex.quote(OPENVPN_INSTALLER_URL)} -o /tmp/openvpn-install.sh; "
                  "bash /tmp/openvpn-install.sh"
              ),
              env={"AUTO_INSTALL": "y"},
              creates=str(p.openvpn_dir / "server.conf"),
              network=True)
        self._services(e, "openvpn", COMPONENT_SERVICES[Component.VPN][0], after=["openvpn.install"])

    def _tls(self, e: _Emitter, desired: DesiredConfig, v: Variant, p: HostPaths) -> None:
        live = p.certificate_dir(desired.domain)
        e.add("tls.issue", StepKind.ISSUE_CERTIFICATE, desired.domain,
              after=["packages.tls", "nginx.restart", "firewall.rules"],
              description=f"Issue TLS certificate for {desired.domain}",
              command=[
                  "certbot", "certonly", "--nginx", "--non-interactive", "--agree-tos",
                  "-m", desired.email or "", "-d", desired.domain,
              ],
              creates=str(live))
        e.add("nginx.site-tls", StepKind.RENDER_TEMPLATE, p.nginx_site,
              after=["tls.issue"],
              description="Render nginx site with TLS",
              template="nginx-site.conf.j2",
              variables={
                  "domain": desired.domain,
                  "web_root": str(p.web_root),
                  "php_fpm_socket": v.php_fpm_socket,
                  "certificate_dir": str(live),
                  "tls_enabled": True,
              },
              mode=0o644)
        e.add("nginx.reload", StepKind.RESTART_SERVICE, "nginx",
              after=["nginx.site-tls"],
              description="Reload nginx",
              action="reload",
              only_if_changed=["nginx.site-tls"])

    def _finish(self, e: _Emitter, desired: DesiredConfig, p: HostPaths, policy: CleanupPolicy, host_state: HostState) -> None:
        if "credentials.obtain" in e:
            e.add("credentials.persist", StepKind.PERSIST_CREDENTIALS, p.credential_file,
                  after=["credentials.obtain"],
                  description="Persist database credentials")

        cleanup_desired = desired.model_copy(update={"paths": p})
        e.add("cleanup.script", StepKind.WRITE_CLEANUP_SCRIPT, p.cleanup_script,
              after=[s.id for s in e.steps],
              description="Write cleanup script",
              template="cleanup.sh.j2",
              variables=cleanup_variables(cleanup_desired, build_cleanup_plan(cleanup_desired, policy), policy),
              mode=0o700)

        if host_state.cleaned_up and policy.consume_marker == "after_success":
            e.add("marker.consume", StepKind.CONSUME_MARKER, p.cleanup_marker,
                  after=["cleanup.script"],
                  description="Consume cleanup marker")

    # ------------------------------------------------------------------
    def _services(
        self,
        e: _Emitter,
        prefix: str,
        service: str,
        *,
        after: Sequence[str],
        triggers: Sequence[str] = (),
    ) -> None:
        e.add(f"{prefix}.enable", StepKind.ENABLE_SERVICE, service, after=after,
              description=f"Enable {service}")
        e.add(f"{prefix}.start", StepKind.START_SERVICE, service, after=[*after, f"{prefix}.enable"],
              description=f"Start {service}")
        if triggers:
            e.add(f"{prefix}.restart", StepKind.RESTART_SERVICE, service,
                  after=[*triggers, f"{prefix}.start"],
                  description=f"Restart {service}",
                  only_if_changed=list(triggers))


def build_plan(
    desired: DesiredConfig,
    host_state: HostState,
    *,
    paths: Optional[HostPaths] = None,
    policy: Optional[CleanupPolicy] = None,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
) -> Plan:
    return PlanBuilder(paths, policy, bus=bus, run_ctx=run_ctx).build(desired, host_state)
