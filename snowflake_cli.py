import sys
import logging
import argparse

from snowflake_config import ConfigError, load_config, setup_logging, build_id_generator
from snowflake_id_generator import SnowflakeError, parse_id

logger = logging.getLogger(__name__)


# ======================
# 1. 命令行参数
# ======================
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="snowflake 64 位唯一 ID 生成")
    parser.add_argument("-n", "--count", type=int, default=1, help="生成 ID 的数量")
    parser.add_argument("--worker-id", type=int, default=None, help="覆盖配置中的 worker_id")
    parser.add_argument("--datacenter-id", type=int, default=None, help="覆盖配置中的 datacenter_id")
    parser.add_argument("--config", default=None, help="YAML 配置文件路径")
    parser.add_argument("--decode", type=int, default=None, metavar="ID", help="解析一个已生成的 ID")
    return parser.parse_args(argv)


# ======================
# 2. 输出函数
# ======================
def print_decoded(snowflake_id, epoch):
    decoded = parse_id(snowflake_id, epoch)
    print(f"timestamp: {decoded.timestamp} ({decoded.datetime.isoformat()})")
    print(f"worker_id: {decoded.worker_id}")
    print(f"datacenter_id: {decoded.datacenter_id}")
    print(f"sequence: {decoded.sequence}")


# ======================
# 3. 主入口
# ======================
def main(argv=None):
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[错误] {e}", file=sys.stderr)
        return 2
    setup_logging(config["logging"]["level"])

    if args.worker_id is not None:
        config["snowflake"]["worker_id"] = args.worker_id
    if args.datacenter_id is not None:
        config["snowflake"]["datacenter_id"] = args.datacenter_id

    if args.decode is not None:
        try:
            print_decoded(args.decode, config["snowflake"]["epoch"])
        except ValueError as e:
            logger.error(f"解析失败: {e}")
            return 2
        return 0

    if args.count < 1:
        logger.error(f"count 必须大于 0: {args.count}")
        return 2

    try:
        id_generator = build_id_generator(config)
    except (SnowflakeError, ValueError) as e:
        logger.error(f"初始化 ID 生成器失败: {e}")
        return 2

    for _ in range(args.count):
        print(id_generator.generate_id())
    return 0


if __name__ == "__main__":
    sys.exit(main())
