import logging
import sys

import pytest
from pydantic import ValidationError

from clipvault.config.factory import Registry, create_strategy
from clipvault.config.loader import apply_env_overrides, load_config
from clipvault.config.schema import AssetConfig
from clipvault.errors import ErrorKind, describe
from clipvault.log_config import RedactFilter
from clipvault.strategies.local import LocalSaveStrategy
from clipvault.strategies.webdav import WebDAVSaveStrategy


def test_defaults_without_file():
    config = load_config()
    assert config.save_method == "local"
    assert config.download_directory == "default"
    assert config.webdav.path == "/"
    assert not config.assets.enabled
    assert config.relay.enabled


def test_load_yaml(tmp_path):
    path = tmp_path / "clipvault.yaml"
    path.write_text(
        "save_method: webdav\n"
        "webdav:\n"
        "  url: https://dav.example.com\n"
        "  username: alice\n"
        "  password: secret\n"
        "  auth_type: digest\n"
        "assets:\n"
        "  enabled: true\n"
        "  dir_name: media\n"
    )
    config = load_config(path)

    assert config.save_method == "webdav"
    assert config.webdav.auth_type == "digest"
    assert config.assets.dir_name == "media"
    assert "secret" not in repr(config.webdav)


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path).save_method == "local"


def test_non_mapping_root_is_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError, match="mapping"):
        load_config(path)


def test_invalid_values_are_rejected(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("save_method: ftp\n")
    with pytest.raises(ValidationError):
        load_config(path)


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("WEBDAV_URL", "https://env.example.com")
    monkeypatch.setenv("WEBDAV_USERNAME", "env-user")
    monkeypatch.setenv("WEBDAV_PASSWORD", "env-pass")
    monkeypatch.setenv("WEBDAV_PATH", "/clips")
    monkeypatch.setenv("DOWNLOAD_DIRECTORY", "custom")
    monkeypatch.setenv("CUSTOM_DOWNLOAD_PATH", "web/clips")

    path = tmp_path / "clipvault.yaml"
    path.write_text("webdav:\n  url: https://file.example.com\n  timeout_s: 5\n")
    config = load_config(path)

    assert config.webdav.url == "https://env.example.com"
    assert config.webdav.username == "env-user"
    assert config.webdav.path == "/clips"
    assert config.webdav.timeout_s == 5
    assert config.download_directory == "custom"
    assert config.custom_download_path == "web/clips"


def test_webdav_env_needs_url(monkeypatch):
    monkeypatch.setenv("WEBDAV_USERNAME", "env-user")
    assert "webdav" not in apply_env_overrides({})


def test_create_strategy():
    assert isinstance(create_strategy("local"), LocalSaveStrategy)
    assert isinstance(create_strategy("webdav"), WebDAVSaveStrategy)
    with pytest.raises(ValueError, match="Unknown save strategy type"):
        create_strategy("dropbox")


def test_describe_error_kinds():
    assert describe(ErrorKind.NETWORK) == "Check the server address and your network connection"
    assert describe(ErrorKind.VALIDATION, "File already exists").endswith(": File already exists")


def test_redact_filter_masks_secrets():
    record = logging.LogRecord("clipvault", logging.INFO, __file__, 1, "login", None, None)
    record.password = "hunter2"
    record.user = "alice"

    assert RedactFilter().filter(record)
    assert record.password == "***"
    assert record.user == "alice"


@pytest.mark.parametrize("module_path,class_name,name", [
    ("clipvault.strategies.local", "LocalSaveStrategy", "local"),
    ("clipvault.strategies.webdav", "WebDAVSaveStrategy", "webdav"),
])
def test_lazy_registry_loads_strategy(monkeypatch, module_path, class_name, name):
    monkeypatch.delitem(sys.modules, module_path, raising=False)
    cls = Registry(lazy=True).factory(module_path, class_name)()

    assert cls.__name__ == class_name
    assert cls.descriptor.name == name
    assert sys.modules[module_path].__spec__.name == module_path


def test_lazy_registry_reuses_loaded_module():
    cls = Registry(lazy=True).factory("clipvault.strategies.local", "LocalSaveStrategy")()
    assert cls is LocalSaveStrategy


def test_lazy_registry_unknown_module():
    factory = Registry(lazy=True).factory("clipvault.strategies.dropbox", "DropboxSaveStrategy")
    with pytest.raises(ImportError, match="not found"):
        factory()


def test_eager_registry_imports_up_front():
    assert Registry(lazy=False).factory("clipvault.strategies.webdav", "WebDAVSaveStrategy")() is WebDAVSaveStrategy
    with pytest.raises(ImportError):
        Registry(lazy=False).factory("clipvault.strategies.dropbox", "DropboxSaveStrategy")


def test_asset_dir_name_must_not_be_empty():
    with pytest.raises(ValidationError):
        AssetConfig(dir_name="")
