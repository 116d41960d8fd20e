from .config import Config, DevelopmentConfig, TestingConfig, ProductionConfig, config
