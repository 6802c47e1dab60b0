from pathlib import Path

import pytest

from ispstack.config.loader import _deep_merge, load_config
from ispstack.config.models import Component, HostPaths
from ispstack.errors import InputError


def test_load_minimal(tmp_path: Path):
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text("domain: billing.example.com\n")

    desired = load_config(cfg)

    assert desired.domain == "billing.example.com"
    assert desired.flavor == "simpleisp"
    assert desired.codename is None
    assert desired.components == list(Component)
    assert desired.cleanup.preserve_credentials is True
    assert desired.paths.credential_file == Path("/root/db.txt")


def test_load_full(tmp_path: Path):
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text(
        """
domain: hotspot.example.com
email: ops@example.com
codename: Noble
flavor: simplespot
components: [web, database, radius]
cleanup:
  consume_marker: after_success
  preserve_certificates: false
paths:
  web_root: /srv/app
"""
    )

    desired = load_config(cfg)

    assert desired.codename == "noble"
    assert desired.flavor == "simplespot"
    assert desired.components == [Component.WEB, Component.DATABASE, Component.RADIUS]
    assert desired.cleanup.consume_marker == "after_success"
    assert desired.cleanup.preserve_certificates is False
    assert desired.paths.web_root == Path("/srv/app")
    assert desired.paths.app_env == Path("/srv/app/.env")


def test_secrets_are_merged_from_env_var(tmp_path: Path, monkeypatch):
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text("domain: billing.example.com\n")
    secrets = tmp_path / "elsewhere.yaml"
    secrets.write_text("email: secret@example.com\n")
    monkeypatch.setenv("ISPSTACK_SECRETS_FILE", str(secrets))

    assert load_config(cfg).email == "secret@example.com"


def test_secrets_next_to_config(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("ISPSTACK_SECRETS_FILE", raising=False)
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text("domain: billing.example.com\n")
    (tmp_path / "secrets.yaml").write_text("app_repo: https://git.example.com/private.git\n")

    assert load_config(cfg).app_repo == "https://git.example.com/private.git"


def test_env_placeholders_are_expanded(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("BILLING_DOMAIN", "env.example.com")
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text("domain: ${BILLING_DOMAIN}\n")
    assert load_config(cfg).domain == "env.example.com"


def test_missing_file_is_an_input_error(tmp_path: Path):
    with pytest.raises(InputError, match="not found"):
        load_config(tmp_path / "nope.yaml")


def test_non_mapping_yaml(tmp_path: Path):
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text("- a\n- b\n")
    with pytest.raises(InputError, match="mapping"):
        load_config(cfg)


def test_validation_errors_become_input_errors(tmp_path: Path):
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text("domain: 'bad domain'\nflavor: other\n")
    with pytest.raises(InputError) as exc:
        load_config(cfg)
    assert "domain" in str(exc.value)
    assert "flavor" in str(exc.value)


def test_overrides_win_but_empty_values_do_not(tmp_path: Path):
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text("domain: file.example.com\nemail: file@example.com\n")

    desired = load_config(cfg, overrides={"domain": "cli.example.com", "email": None})

    assert desired.domain == "cli.example.com"
    assert desired.email == "file@example.com"


def test_overrides_without_file():
    desired = load_config(overrides={"domain": "cli.example.com", "codename": "jammy"})
    assert desired.codename == "jammy"


def test_no_domain_anywhere():
    with pytest.raises(InputError, match="domain"):
        load_config(overrides={})


def test_deep_merge_nested():
    base = {"cleanup": {"preserve_credentials": True, "consume_marker": "on_detection"}}
    _deep_merge(base, {"cleanup": {"consume_marker": "after_success"}})
    assert base == {"cleanup": {"preserve_credentials": True, "consume_marker": "after_success"}}


def test_paths_under_root(tmp_path: Path):
    p = HostPaths().under(tmp_path)
    assert p.credential_file == tmp_path / "root" / "db.txt"
    assert p.radius_sql_module == tmp_path / "etc" / "freeradius" / "mods-available" / "sql"


def test_unused_keys_are_not_carried_into_the_model(tmp_path: Path):
    cfg = tmp_path / "ispstack.yaml"
    cfg.write_text("domain: billing.example.com\ntimezone: Africa/Lagos\n")
    desired = load_config(cfg)
    assert "timezone" not in desired.model_dump()
