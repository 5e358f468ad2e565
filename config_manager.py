# config_manager.py
import os
import tomllib
import logging
from dataclasses import dataclass

from constants import APP_NAME, APP_VERSION, DEFAULT_CONFIG_PATH, DEFAULT_LOG_PATH, DEFAULT_NICK, DEFAULT_SAVE_PATH

logger = logging.getLogger("ConfigManager")

@dataclass
class UserConfig:
    nick: str = DEFAULT_NICK
    client: str = f"{APP_NAME} v{APP_VERSION}"
    private_chat_port: int = 0

@dataclass
class ChatConfig:
    no_private_chat: bool = False

@dataclass
class StorageConfig:
    save_path: str = DEFAULT_SAVE_PATH

@dataclass
class TransferConfig:
    # Drop the transfer from the registry when the network refuses the offer
    rollback_failed_offers: bool = False

@dataclass
class LoggingConfig:
    debug: bool = False
    file_path: str = DEFAULT_LOG_PATH
    max_size_mb: int = 10
    backup_count: int = 5

class Settings:
    _instance = None

    def __new__(cls, config_path=DEFAULT_CONFIG_PATH):
        if cls._instance is None:
            cls._instance = super(Settings, cls).__new__(cls)
            cls._instance.path = config_path
            cls._instance.load()
        return cls._instance

    @classmethod
    def reset(cls):
        """Forgets the loaded instance so the next Settings() reads the file again."""
        cls._instance = None

    def load(self):
        if not os.path.exists(self.path):
            type(self)._instance = None
            raise FileNotFoundError(f"Configuration file not found: {self.path}")

        try:
            with open(self.path, "rb") as f:
                data = tomllib.load(f)

            self.user = UserConfig(**data.get('user', {}))
            self.chat = ChatConfig(**data.get('chat', {}))
            self.storage = StorageConfig(**data.get('storage', {}))
            self.transfer = TransferConfig(**data.get('transfer', {}))
            self.logging = LoggingConfig(**data.get('logging', {}))

            # Incoming files land here
            os.makedirs(self.storage.save_path, exist_ok=True)

        except tomllib.TOMLDecodeError as e:
            type(self)._instance = None
            logger.error(f"Invalid TOML format in {self.path}: {e}")
            raise ValueError(f"Config syntax error: {e}")
        except TypeError as e:
            type(self)._instance = None
            logger.error(f"Unexpected key in {self.path}: {e}")
            raise ValueError(f"Config key error: {e}")
        except OSError as e:
            type(self)._instance = None
            logger.error(f"Could not access config or create directories: {e}")
            raise
