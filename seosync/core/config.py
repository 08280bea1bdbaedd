import os
from pathlib import Path

import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent.parent / "config" / "settings.yaml"


def config_path() -> Path:
    return Path(os.getenv("SEOSYNC_CONFIG") or DEFAULT_CONFIG_PATH)


class Config:
    _config = None

    @classmethod
    def load(cls, path=None):
        if cls._config is None:
            path = Path(path) if path else config_path()
            if path.exists():
                with open(path, "r") as f:
                    cls._config = yaml.safe_load(f) or {}
            else:
                cls._config = {}
        return cls._config

    @classmethod
    def reset(cls):
        cls._config = None

    @classmethod
    def get(cls, *keys, default=None):
        cfg = cls.load()
        for key in keys:
            if not isinstance(cfg, dict):
                return default
            cfg = cfg.get(key)
        return cfg if cfg is not None else default
