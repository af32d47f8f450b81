import os
import configparser
import tempfile

from dbkeeper.models import BackupConfig, CloudConfig, TelegramCredentials, TrackedObject


class ConfigError(Exception):
    """Raised when the configuration file is missing or malformed."""
    pass


class Config:
    """Runtime configuration"""

    # Config file
    CONFIG_FILE = os.environ.get('DBKEEPER_CONFIG') or 'backups.ini'

    # State (one .last file per tracked object) and log directory
    STATE_DIR = os.environ.get('DBKEEPER_STATE_DIR') or os.path.join(os.path.expanduser('~'), '.backup_logs')
    LOG_FILE = os.environ.get('DBKEEPER_LOG_FILE') or os.path.join(STATE_DIR, 'dbkeeper.log')
    LOCK_FILE = os.path.join(STATE_DIR, 'dbkeeper.lock')

    # Scratch storage for archives, wiped at exit
    SCRATCH_DIR = os.environ.get('DBKEEPER_SCRATCH_DIR') or os.path.join(tempfile.gettempdir(), 'db_backups')

    # Retention
    RETENTION_KEEP = 10

    # External tools and timeouts (seconds)
    RCLONE_BINARY = os.environ.get('DBKEEPER_RCLONE') or 'rclone'
    RCLONE_TIMEOUT = int(os.environ.get('DBKEEPER_RCLONE_TIMEOUT', 3600))
    ALERT_TIMEOUT = 10

    DEBUG = os.environ.get('DBKEEPER_DEBUG', 'false').lower() == 'true'

    @classmethod
    def ensure_directories(cls):
        os.makedirs(cls.STATE_DIR, exist_ok=True)
        os.makedirs(cls.SCRATCH_DIR, exist_ok=True)


def _parse_telegram(value: str) -> TelegramCredentials:
    # Token itself contains a colon, chat id is after the last one
    value = ''.join(value.split())
    token, sep, chat_id = value.rpartition(':')
    if not sep or not token or not chat_id:
        raise ConfigError("Invalid telegram format in config, expected token:chat_id")
    return TelegramCredentials(token=token, chat_id=chat_id)


def _parse_object(label: str, value: str) -> TrackedObject:
    parts = [p.strip() for p in value.split(';')]
    if len(parts) != 3:
        raise ConfigError(
            f"Invalid object '{label}': expected 'path;interval_days;remote_folder', got '{value}'"
        )

    local_path, raw_days, remote_folder = parts

    if not local_path:
        raise ConfigError(f"Invalid object '{label}': empty path")

    try:
        interval_days = int(raw_days)
    except ValueError:
        raise ConfigError(f"Invalid object '{label}': interval '{raw_days}' is not an integer")

    if interval_days < 0:
        raise ConfigError(f"Invalid object '{label}': interval must be >= 0, got {interval_days}")

    return TrackedObject(
        local_path=local_path,
        interval_days=interval_days,
        remote_folder=remote_folder.strip('/')
    )


def load_config(path: str) -> BackupConfig:
    """
    Load and validate the backup configuration file.

    The file has a [cloud] section (provider, optional telegram) and an
    [objects] section whose values are 'path;interval_days;remote_folder'.

    Args:
        path: Path to the INI file

    Returns:
        Parsed BackupConfig

    Raises:
        ConfigError: If the file is missing or invalid
    """
    if not os.path.isfile(path):
        raise ConfigError(f"Configuration file {path} not found")

    parser = configparser.ConfigParser(
        delimiters=('=',),
        interpolation=None,
        strict=False,
        inline_comment_prefixes=('#',)
    )
    parser.optionxform = str

    try:
        with open(path, 'r', encoding='utf-8') as f:
            parser.read_file(f)
    except configparser.Error as e:
        raise ConfigError(f"Failed to parse {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read {path}: {e}")

    if not parser.has_section('cloud'):
        raise ConfigError("Missing [cloud] section")

    remote_name = parser.get('cloud', 'provider', fallback='').strip()
    if not remote_name:
        raise ConfigError("Missing 'provider' in [cloud] section")

    telegram = None
    raw_telegram = parser.get('cloud', 'telegram', fallback='').strip()
    if raw_telegram:
        telegram = _parse_telegram(raw_telegram)

    objects = []
    if parser.has_section('objects'):
        for label, value in parser.items('objects'):
            objects.append(_parse_object(label, value))

    return BackupConfig(
        cloud=CloudConfig(remote_name=remote_name, telegram=telegram),
        objects=tuple(objects)
    )


def credentials_hint(path: str):
    """
    Best-effort read of alert credentials from a config file that failed validation.

    Used only so a fatal config error can still be alerted when the
    telegram line itself is intact.
    """
    parser = configparser.ConfigParser(
        delimiters=('=',),
        interpolation=None,
        strict=False,
        inline_comment_prefixes=('#',)
    )
    try:
        parser.read(path, encoding='utf-8')
        raw = parser.get('cloud', 'telegram', fallback='').strip()
        return _parse_telegram(raw) if raw else None
    except (configparser.Error, ConfigError, OSError):
        return None
