from pathlib import Path

from ispstack.config.models import HostPaths
from ispstack.state.detector import StateDetector, detect, read_os_codename


def _paths(tmp_path: Path) -> HostPaths:
    return HostPaths().under(tmp_path)


def test_fresh_host(tmp_path: Path):
    state = StateDetector(_paths(tmp_path)).detect()
    assert not state.installed
    assert not state.cleaned_up
    assert state.existing_credentials is None
    assert state.os_codename == ""
    assert state.certificates == ()


def test_installed_host(tmp_path: Path):
    p = _paths(tmp_path)
    p.cleanup_script.parent.mkdir(parents=True)
    p.cleanup_script.write_text("#!/bin/bash\n")
    p.credential_file.write_text(
        "MySQL Credentials:\nDB_DATABASE=radius\nDB_USERNAME=user_abc123\nDB_PASSWORD=pw=\n"
    )
    (p.certificate_dir("billing.example.com")).mkdir(parents=True)

    state = detect(p)

    assert state.installed and not state.cleaned_up
    assert state.existing_credentials.db_user == "user_abc123"
    assert state.existing_credentials.db_password == "pw="
    assert state.has_certificate("billing.example.com")
    assert not state.has_certificate("other.example.com")


def test_cleaned_up_host_reports_marker_text(tmp_path: Path):
    p = _paths(tmp_path)
    p.cleanup_marker.parent.mkdir(parents=True)
    p.cleanup_marker.write_text("2024-05-01 10:00:00\n")

    state = detect(p)

    assert state.cleaned_up
    assert state.cleanup_marker_text == "2024-05-01 10:00:00"
    assert not state.installed


def test_empty_marker_still_counts(tmp_path: Path):
    p = _paths(tmp_path)
    p.cleanup_marker.parent.mkdir(parents=True)
    p.cleanup_marker.touch()
    state = detect(p)
    assert state.cleaned_up
    assert state.cleanup_marker_text is None


def test_incomplete_credentials_are_absent(tmp_path: Path):
    p = _paths(tmp_path)
    p.credential_file.parent.mkdir(parents=True)
    p.credential_file.write_text("DB_USERNAME=someone\n")
    assert detect(p).existing_credentials is None


def test_unreadable_credential_file_is_absent(tmp_path: Path):
    p = _paths(tmp_path)
    # a directory where the file should be
    p.credential_file.mkdir(parents=True)
    assert detect(p).existing_credentials is None


def test_os_release_codename(tmp_path: Path):
    f = tmp_path / "os-release"
    f.write_text('NAME="Ubuntu"\nVERSION_CODENAME=jammy\n')
    assert read_os_codename(f) == "jammy"

    f.write_text("NAME=\"Ubuntu\"\nUBUNTU_CODENAME='Noble'\n")
    assert read_os_codename(f) == "noble"

    assert read_os_codename(tmp_path / "missing") == ""


def test_detection_does_not_mutate(tmp_path: Path):
    p = _paths(tmp_path)
    before = sorted(tmp_path.rglob("*"))
    detect(p)
    assert sorted(tmp_path.rglob("*")) == before
