import os
import logging
import threading

import yaml  # 需要安装 PyYAML: pip install pyyaml

from snowflake_id_generator import SnowflakeIDGenerator, DEFAULT_EPOCH

logger = logging.getLogger(__name__)

# ======================
# 默认配置
# ======================
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "config.yaml")

DEFAULT_CONFIG = {
    "snowflake": {
        "worker_id": 0,
        "datacenter_id": 0,
        "epoch": DEFAULT_EPOCH,
        "on_clock_backwards": "reset",
        "spin_interval": 0.0001,
    },
    "logging": {
        "level": "INFO",
    },
}

# 环境变量 -> (配置段, 配置项, 类型)
ENV_OVERRIDES = {
    "SNOWFLAKE_WORKER_ID": ("snowflake", "worker_id", int),
    "SNOWFLAKE_DATACENTER_ID": ("snowflake", "datacenter_id", int),
    "SNOWFLAKE_EPOCH": ("snowflake", "epoch", int),
    "SNOWFLAKE_ON_CLOCK_BACKWARDS": ("snowflake", "on_clock_backwards", str),
    "SNOWFLAKE_LOG_LEVEL": ("logging", "level", str),
}


class ConfigError(Exception):
    pass


def read_config_file(file_path):
    """
    读取 YAML 配置文件

    :param file_path: 配置文件路径
    :return: 配置字典，文件不存在时返回空字典
    """
    if not os.path.exists(file_path):
        logger.info(f"配置文件不存在，使用默认配置: {file_path}")
        return {}
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"配置文件解析失败 {file_path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"配置文件顶层必须是映射: {file_path}")
    return data


def load_config(file_path=None, environ=None):
    """
    加载配置: 默认值 < YAML 文件 < 环境变量

    :param file_path: 配置文件路径，默认取 SNOWFLAKE_CONFIG 或模块目录下的 config.yaml
    :param environ: 环境变量映射，默认 os.environ
    :return: 合并后的配置字典
    """
    environ = os.environ if environ is None else environ
    file_path = file_path or environ.get("SNOWFLAKE_CONFIG") or DEFAULT_CONFIG_PATH

    config = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    for section, values in read_config_file(file_path).items():
        if section not in config:
            logger.warning(f"忽略未知配置段: {section}")
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"配置段 {section} 必须是映射")
        config[section].update(values)

    for env_name, (section, key, cast) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            config[section][key] = cast(raw)
        except ValueError as e:
            raise ConfigError(f"环境变量 {env_name} 的值无效: {raw!r}") from e

    for key in ("worker_id", "datacenter_id", "epoch"):
        value = config["snowflake"][key]
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"snowflake.{key} 必须是整数, 当前值: {value!r}")

    spin_interval = config["snowflake"]["spin_interval"]
    if isinstance(spin_interval, bool) or not isinstance(spin_interval, (int, float)):
        raise ConfigError(f"snowflake.spin_interval 必须是数字, 当前值: {spin_interval!r}")
    policy = config["snowflake"]["on_clock_backwards"]
    if not isinstance(policy, str):
        raise ConfigError(f"snowflake.on_clock_backwards 必须是字符串, 当前值: {policy!r}")
    return config


def setup_logging(level="INFO"):
    log_level = getattr(logging, str(level).upper(), None)
    unknown = not isinstance(log_level, int)
    logging.basicConfig(
        level=logging.INFO if unknown else log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if unknown:
        logger.warning(f"未知的日志级别 {level!r}，使用 INFO")


def build_id_generator(config):
    snowflake_config = config["snowflake"]
    return SnowflakeIDGenerator(
        worker_id=snowflake_config["worker_id"],
        datacenter_id=snowflake_config["datacenter_id"],
        epoch=snowflake_config["epoch"],
        on_clock_backwards=snowflake_config["on_clock_backwards"],
        spin_interval=snowflake_config["spin_interval"],
    )


_id_generator = None
_id_generator_lock = threading.Lock()


def get_id_generator():
    """进程内共享的 SnowflakeIDGenerator，首次调用时按配置初始化"""
    global _id_generator
    with _id_generator_lock:
        if _id_generator is None:
            _id_generator = build_id_generator(load_config())
        return _id_generator
