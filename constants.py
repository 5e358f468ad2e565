# constants.py

# Product identity
APP_NAME = "DropChat"
APP_VERSION = "0.3.0"
APP_DESCRIPTION = "Serverless LAN chat with file transfers"

# Command line markers
COMMAND_MARKER = "/"
HELP_VERB = "help"

# Nick rules
MAX_NICK_LENGTH = 10

# Date formats
TOPIC_DATE_FORMAT = "%H:%M:%S, %d. %b. %y"

# Defaults
DEFAULT_CONFIG_PATH = "config/config.toml"
DEFAULT_LOG_PATH = "logs/app.jsonl"
DEFAULT_SAVE_PATH = "downloads"
DEFAULT_NICK = "Anonymous"
