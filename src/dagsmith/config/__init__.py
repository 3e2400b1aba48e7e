from dagsmith.config.models import ModelConfig, SeedConfig
from dagsmith.config.project import ProjectConfig, parse_project_yaml_config
from dagsmith.config.sources import load_sources_config

__all__ = [
    "ModelConfig",
    "ProjectConfig",
    "SeedConfig",
    "load_sources_config",
    "parse_project_yaml_config",
]
