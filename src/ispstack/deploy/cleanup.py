# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/ispstack/deploy/cleanup.py
#
# The inverse of an install plan. The same steps are either executed directly
# (`ispstack cleanup`) or rendered to the cleanup script written at the end of
# every install.

from __future__ import annotations

import shlex
from typing import Any, Dict, List, Optional

from .models import Plan, Step, StepKind
from ..config.models import CleanupPolicy, Component, DesiredConfig, HostPaths
from ..config.variants import FLAVORS
from ..errors import IspStackError

DROP_STATEMENTS = [
    "DROP DATABASE IF EXISTS `{db_name}`",
    "DROP USER IF EXISTS '{db_user}'@'localhost'",
    "DROP USER IF EXISTS '{db_user}'@'%'",
    "FLUSH PRIVILEGES",
]

_SHELL_CREDENTIALS = {
    "db_name": "${DB_DATABASE}",
    "db_user": "${DB_USERNAME}",
}


def cleanup_services(desired: DesiredConfig) -> List[str]:
    """Services stopped by cleanup, consumers first. MariaDB keeps running."""
    flavor = FLAVORS[desired.flavor]
    php = desired.php_version or flavor.php_version
    out: List[str] = []
    if desired.has(Component.SUPERVISOR):
        out.append("supervisor")
    if desired.has(Component.RADIUS):
        out.append("freeradius")
    if desired.has(Component.VPN):
        out.append("openvpn")
    if desired.has(Component.WEB):
        out += ["nginx", f"php{php}-fpm"]
    if desired.has(Component.CACHE):
        out.append("redis-server")
    return out


def _removals(desired: DesiredConfig, policy: CleanupPolicy) -> List[tuple]:
    p: HostPaths = desired.paths
    flavor = FLAVORS[desired.flavor]
    php = desired.php_version or flavor.php_version
    out: List[tuple] = []

    if desired.has(Component.WEB):
        out += [
            ("web-root", p.web_root),
            ("nginx-site-link", p.nginx_site_enabled),
            ("nginx-site", p.nginx_site),
            ("sudoers", p.sudoers_file),
            ("scheduler-cron", p.scheduler_cron),
        ]
        if flavor.needs_ioncube:
            out += [(f"ioncube-link-{link.parent.parent.name}", link) for link in p.ioncube_links(php)]
            out.append(("ioncube-ini", p.ioncube_ini(php)))
            if not policy.preserve_ioncube:
                out.append(("ioncube", p.ioncube_dir))
    if desired.has(Component.RADIUS):
        out += [
            ("radius-sql-link", p.radius_sql_enabled),
            ("radius-buffered-sql-link", p.radius_buffered_enabled),
            ("radius-sql", p.radius_sql_module),
        ]
    if desired.has(Component.SUPERVISOR):
        out.append(("supervisor-worker", p.supervisor_worker))
    if desired.has(Component.VPN):
        out.append(("openvpn", p.openvpn_dir))
    if desired.has(Component.DATABASE):
        out.append(("mariadb-config", p.mariadb_server_conf))
    if desired.has(Component.CACHE):
        out.append(("redis-dump", p.redis_data / "dump.rdb"))
    if desired.has(Component.TLS) and not policy.preserve_certificates:
        out.append(("certificate", p.certificate_dir(desired.domain)))
    if not policy.preserve_credentials:
        out.append(("credentials", p.credential_file))

    # the script is the "installed" marker, it goes last
    out.append(("cleanup-script", p.cleanup_script))
    return out


def build_cleanup_plan(desired: DesiredConfig, policy: Optional[CleanupPolicy] = None) -> Plan:
    """
    Linear plan: stop services, drop the application database and user,
    remove generated files, then write the cleanup marker.
    """
    policy = policy or desired.cleanup
    p = desired.paths
    steps: List[Step] = []

    def add(step_id: str, kind: StepKind, target: str = "", description: str = "", **params: Any) -> None:
        deps = [steps[-1].id] if steps else []
        steps.append(Step(step_id, kind, target, params, deps, description))

    for svc in cleanup_services(desired):
        add(f"stop.{svc}", StepKind.STOP_SERVICE, svc, f"Stop {svc}")

    if desired.has(Component.DATABASE):
        add(
            "database.drop",
            StepKind.DATABASE,
            description="Drop application database and user",
            statements=list(DROP_STATEMENTS),
            probe="SELECT COUNT(*) FROM information_schema.SCHEMATA WHERE SCHEMA_NAME='{db_name}'",
            expect="0",
            credentials=True,
            optional=True,
        )

    for name, path in _removals(desired, policy):
        add(f"remove.{name}", StepKind.REMOVE_PATH, str(path), f"Remove {path}")

    add("marker.write", StepKind.WRITE_MARKER, str(p.cleanup_marker), "Write cleanup marker")
    return Plan(steps=steps)


def shell_lines(step: Step, paths: HostPaths) -> List[str]:
    if step.kind is StepKind.STOP_SERVICE:
        return [f"systemctl stop {shlex.quote(step.target)} 2>/dev/null || true"]
    if step.kind is StepKind.REMOVE_PATH:
        return [f"rm -rf {shlex.quote(step.target)}"]
    if step.kind is StepKind.WRITE_MARKER:
        return [f"date '+%Y-%m-%d %H:%M:%S' > {shlex.quote(step.target)}"]
    if step.kind is StepKind.DATABASE:
        cred = shlex.quote(str(paths.credential_file))
        sql = "; ".join(s.format(**_SHELL_CREDENTIALS) for s in step.params["statements"]) + ";"
        sql = sql.replace("`", "\\`")
        return [
            f"if [ -f {cred} ]; then",
            f"    DB_DATABASE=$(sed -n 's/^DB_DATABASE=//p' {cred})",
            f"    DB_USERNAME=$(sed -n 's/^DB_USERNAME=//p' {cred})",
            f'    mysql -e "{sql}" || true',
            "fi",
        ]
    raise IspStackError(f"no shell rendering for step kind '{step.kind.value}'")


def cleanup_variables(
    desired: DesiredConfig,
    plan: Optional[Plan] = None,
    policy: Optional[CleanupPolicy] = None,
) -> Dict[str, Any]:
    policy = policy or desired.cleanup
    plan = plan or build_cleanup_plan(desired, policy)
    p = desired.paths

    preserved: List[str] = []
    if policy.preserve_credentials:
        preserved.append(f"database credentials ({p.credential_file})")
    if policy.preserve_certificates and desired.has(Component.TLS):
        preserved.append(f"TLS certificates ({p.letsencrypt_live})")
    if policy.preserve_ioncube and FLAVORS[desired.flavor].needs_ioncube:
        preserved.append(f"ionCube loaders ({p.ioncube_dir})")

    return {
        "domain": desired.domain,
        "preserved": preserved,
        "steps": [
            {"description": step.label(), "shell": shell_lines(step, p)}
            for step in plan
        ],
    }


def render_cleanup_script(desired: DesiredConfig, renderer, policy: Optional[CleanupPolicy] = None) -> str:
    return renderer.render("cleanup.sh.j2", cleanup_variables(desired, policy=policy))
