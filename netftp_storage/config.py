import configparser
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class ConnectionConfig:
    timeout_seconds: float = 30
    retry_budget_seconds: float = 30
    retry_interval_seconds: float = 1
    passive_mode: bool = True
    encoding: str = "utf-8"
    verify_certificates: bool = True


@dataclass
class LogConfig:
    level: str = "INFO"
    file: str = ""
    console: bool = True
    protocol_trace: bool = False
    trace_file: str = ""


@dataclass
class StorageConfig:
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    logging: LogConfig = field(default_factory=LogConfig)


_TRUE_VALUES = ("true", "1", "yes")


def _parse_number(section: configparser.SectionProxy, key: str) -> float:
    value = section.get(key)
    try:
        number = float(value)
    except ValueError:
        raise ValueError(
            f"Invalid {key} value in config: '{value}' - must be a number"
        ) from None
    if number < 0:
        raise ValueError(f"Invalid {key} value in config: '{value}' - must not be negative")
    return number


def load_config(config_path: str | None = None, **overrides) -> StorageConfig:
    """
    Load configuration from an INI file and/or keyword overrides.
    Overrides take precedence over the config file.

    Args:
        config_path: Path to the INI configuration file.
        **overrides: Field names of ConnectionConfig or LogConfig
            (prefixed with ``log_`` for the latter, e.g. ``log_level`` or
            ``log_protocol_trace``).

    Returns:
        StorageConfig: The populated configuration object.

    Raises:
        FileNotFoundError: If config_path is provided but does not exist.
        ValueError: If a numeric field is malformed.
    """
    connection_config = {
        "timeout_seconds": 30,
        "retry_budget_seconds": 30,
        "retry_interval_seconds": 1,
        "passive_mode": True,
        "encoding": "utf-8",
        "verify_certificates": True,
    }
    log_config = {
        "level": "INFO",
        "file": "",
        "console": True,
        "protocol_trace": False,
        "trace_file": "",
    }

    if config_path is not None:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        parser = configparser.ConfigParser()
        parser.read(config_file, encoding="utf-8")

        # Load [connection] section
        if parser.has_section("connection"):
            conn_section = parser["connection"]
            for key in ("timeout_seconds", "retry_budget_seconds", "retry_interval_seconds"):
                if conn_section.get(key):
                    connection_config[key] = _parse_number(conn_section, key)
            if conn_section.get("passive_mode"):
                connection_config["passive_mode"] = (
                    conn_section.get("passive_mode").lower() in _TRUE_VALUES
                )
            if conn_section.get("encoding"):
                connection_config["encoding"] = conn_section.get("encoding")
            if conn_section.get("verify_certificates"):
                connection_config["verify_certificates"] = (
                    conn_section.get("verify_certificates").lower() in _TRUE_VALUES
                )

        # Load [logging] section
        if parser.has_section("logging"):
            log_section = parser["logging"]
            if log_section.get("level"):
                log_config["level"] = log_section.get("level")
            if log_section.get("file"):
                log_config["file"] = log_section.get("file")
            if log_section.get("console"):
                log_config["console"] = log_section.get("console").lower() in _TRUE_VALUES
            if log_section.get("protocol_trace"):
                log_config["protocol_trace"] = (
                    log_section.get("protocol_trace").lower() in _TRUE_VALUES
                )
            if log_section.get("trace_file"):
                log_config["trace_file"] = log_section.get("trace_file")

    # Overrides take precedence
    for key in connection_config:
        if overrides.get(key) is not None:
            connection_config[key] = overrides[key]
    for key in log_config:
        if overrides.get(f"log_{key}") is not None:
            log_config[key] = overrides[f"log_{key}"]

    if connection_config["retry_interval_seconds"] <= 0:
        raise ValueError("retry_interval_seconds must be greater than zero")

    return StorageConfig(
        connection=ConnectionConfig(**connection_config),
        logging=LogConfig(**log_config),
    )
