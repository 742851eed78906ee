"""
配置测试
"""

import pytest
import yaml

from relcore.core.config import Config, load_config_from_env

from conftest import SCHEMA


class TestConfig:
    """配置测试类"""

    def test_defaults(self):
        """默认配置"""
        config = Config()
        assert config.storage.backend == "memory"
        assert config.loading.default_strategy == "deferred"
        assert config.loading.eager_concurrency is True
        assert config.loading.include_parent_paths is True
        assert config.query.default_limit is None
        assert config.schema == {"entities": {}}

    def test_from_dict(self):
        """从字典创建"""
        config = Config.from_dict({
            "storage": {"backend": "json", "entity_store_dir": "/tmp/entities"},
            "loading": {"default_strategy": "implicit", "max_plan_depth": 2},
            "query": {"default_limit": 50},
            "schema": SCHEMA,
        })
        assert config.storage.backend == "json"
        assert config.loading.default_strategy == "implicit"
        assert config.loading.max_plan_depth == 2
        assert config.query.default_limit == 50
        assert "Employee" in config.schema["entities"]

    def test_unknown_option(self):
        """未知配置项"""
        with pytest.raises(TypeError):
            Config.from_dict({"loading": {"lazy": True}})

    def test_file_round_trip(self, tmp_path):
        """保存并重新加载"""
        config = Config.from_dict({"loading": {"eager_concurrency": False}, "schema": SCHEMA})
        config_path = tmp_path / "conf" / "relcore.yaml"
        config.save_to_file(str(config_path))

        with open(config_path, "r", encoding="utf-8") as f:
            assert yaml.safe_load(f)["loading"]["eager_concurrency"] is False

        loaded = Config.from_file(str(config_path))
        assert loaded.to_dict() == config.to_dict()

    def test_missing_file(self, tmp_path):
        """配置文件不存在"""
        with pytest.raises(FileNotFoundError):
            Config.from_file(str(tmp_path / "missing.yaml"))

    def test_env(self, monkeypatch, tmp_path):
        """从环境变量加载"""
        schema_path = tmp_path / "schema.yaml"
        schema_path.write_text(yaml.dump(SCHEMA), encoding="utf-8")

        monkeypatch.setenv("RCDB_STORAGE_BACKEND", "json")
        monkeypatch.setenv("RCDB_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("RCDB_DEFAULT_STRATEGY", "EAGER")
        monkeypatch.setenv("RCDB_EAGER_CONCURRENCY", "false")
        monkeypatch.setenv("RCDB_MAX_PLAN_DEPTH", "3")
        monkeypatch.setenv("RCDB_MAX_LIMIT", "20")
        monkeypatch.setenv("RCDB_SCHEMA_FILE", str(schema_path))

        config = load_config_from_env()
        assert config.storage.backend == "json"
        assert config.storage.entity_store_dir == str(tmp_path / "entities")
        assert config.loading.default_strategy == "eager"
        assert config.loading.eager_concurrency is False
        assert config.loading.max_plan_depth == 3
        assert config.query.max_limit == 20
        assert config.schema == SCHEMA
