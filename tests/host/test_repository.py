from pathlib import Path

import pytest
import requests

from ispstack.config.models import HostPaths
from ispstack.config.variants import RepositorySpec, php_repository, radius_repository
from ispstack.errors import IspStackError, TransientExternalError
from ispstack.host.repository import AptRepositoryConfigurer

from fakes import FakeRunner


class FakeResponse:
    def __init__(self, status_code=200, content=b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n"):
        self.status_code = status_code
        self.content = content


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.urls = []

    def get(self, url, timeout=None):
        self.urls.append(url)
        r = self.responses.pop(0)
        if isinstance(r, Exception):
            raise r
        return r


def _configurer(paths: HostPaths, *responses, runner=None):
    return AptRepositoryConfigurer(
        runner or FakeRunner(),
        sources_dir=paths.apt_sources,
        session=FakeSession(*responses),
    )


def test_ppa_is_added_once(tmp_path: Path):
    paths = HostPaths().under(tmp_path)
    paths.apt_sources.mkdir(parents=True)
    runner = FakeRunner()
    repo = _configurer(paths, runner=runner)
    spec = php_repository("jammy", paths)

    assert repo.add(spec) is True
    assert runner.calls[0][1] == ["add-apt-repository", "-y", "ppa:ondrej/php"]

    (paths.apt_sources / "ondrej-ubuntu-php-jammy.list").write_text("deb ...\n")
    assert repo.add(spec) is False
    assert len(runner.calls) == 1


def test_source_repository_writes_key_source_and_pin(tmp_path: Path):
    paths = HostPaths().under(tmp_path)
    repo = _configurer(paths, FakeResponse())
    spec = radius_repository("jammy", paths)

    assert repo.add(spec) is True
    assert spec.key_path.read_bytes().startswith(b"-----BEGIN PGP")
    assert spec.source_path.read_text() == spec.source_text
    assert "Pin-Priority: 999" in spec.pin_path.read_text()

    # second pass downloads nothing
    assert repo.add(spec) is False
    assert len(repo.session.urls) == 1


def test_dearmored_keys_go_through_gpg(tmp_path: Path):
    paths = HostPaths().under(tmp_path)
    runner = FakeRunner()
    repo = _configurer(paths, FakeResponse(), runner=runner)
    spec = php_repository("noble", paths)
    spec.key_path.parent.mkdir(parents=True)
    # gpg would create the file
    runner.creates["repo-ondrej-php-key"] = (spec.key_path, False)

    assert repo.add(spec) is True
    gpg = runner.calls[0][1]
    assert gpg[:4] == ["gpg", "--batch", "--yes", "--dearmor"]
    assert gpg[5] == str(spec.key_path)


def test_server_errors_are_transient(tmp_path: Path):
    paths = HostPaths().under(tmp_path)
    repo = _configurer(paths, FakeResponse(503))
    with pytest.raises(TransientExternalError):
        repo.add(radius_repository("focal", paths))


def test_connection_errors_are_transient(tmp_path: Path):
    paths = HostPaths().under(tmp_path)
    repo = _configurer(paths, requests.ConnectionError("Temporary failure in name resolution"))
    with pytest.raises(TransientExternalError, match="name resolution"):
        repo.add(radius_repository("focal", paths))


def test_not_found_is_fatal(tmp_path: Path):
    paths = HostPaths().under(tmp_path)
    repo = _configurer(paths, FakeResponse(404))
    with pytest.raises(IspStackError) as exc:
        repo.add(radius_repository("focal", paths))
    assert not isinstance(exc.value, TransientExternalError)


def test_unknown_kind(tmp_path: Path):
    repo = _configurer(HostPaths().under(tmp_path))
    with pytest.raises(IspStackError, match="unknown repository kind"):
        repo.add(RepositorySpec(name="x", kind="snap"))
