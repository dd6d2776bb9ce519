import time
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, NamedTuple, Optional

logger = logging.getLogger(__name__)

# snowflake 结构 (64 位):
# 0 - 41 位毫秒时间戳 - 5 位工作id - 5 位数据中心id - 12 位序列号
# 最高位保留为 0，保证 ID 作为有符号 64 位整数时为正数
WORKER_ID_BITS = 5           # 工作id位数
DATACENTER_ID_BITS = 5       # 数据中心id位数
SEQUENCE_BITS = 12           # 序列号位数
TIMESTAMP_BITS = 41          # 时间戳位数

MAX_WORKER_ID = (1 << WORKER_ID_BITS) - 1          # 31
MAX_DATACENTER_ID = (1 << DATACENTER_ID_BITS) - 1  # 31
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1            # 4095
MAX_TIMESTAMP = (1 << TIMESTAMP_BITS) - 1

DATACENTER_ID_SHIFT = SEQUENCE_BITS
WORKER_ID_SHIFT = SEQUENCE_BITS + DATACENTER_ID_BITS
TIMESTAMP_LEFT_SHIFT = SEQUENCE_BITS + DATACENTER_ID_BITS + WORKER_ID_BITS

# 默认以 Unix 纪元为起点，41 位时间戳在 2039-09-07 23:47:35 UTC 之前有效
DEFAULT_EPOCH = 0

CLOCK_BACKWARDS_POLICIES = ("reset", "raise", "wait")


class SnowflakeError(Exception):
    pass


class InvalidIdentityError(SnowflakeError, ValueError):
    """worker_id 或 datacenter_id 超出 5 位取值范围"""

    def __init__(self, field: str, value, max_value: int):
        self.field = field
        self.value = value
        self.max_value = max_value
        super().__init__(f"{field} 必须在 0 ~ {max_value} 之间, 当前值: {value!r}")


class ClockMovedBackwardsError(SnowflakeError):
    def __init__(self, timestamp: int, last_timestamp: int):
        self.timestamp = timestamp
        self.last_timestamp = last_timestamp
        super().__init__(
            f"时钟回拨！拒绝生成ID。当前时间戳: {timestamp}, 上次时间戳: {last_timestamp}"
        )


class SnowflakeID(NamedTuple):
    timestamp: int
    worker_id: int
    datacenter_id: int
    sequence: int

    @property
    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)


def parse_id(snowflake_id: int, epoch: int = DEFAULT_EPOCH) -> SnowflakeID:
    """
    按位拆解一个 snowflake ID

    :param snowflake_id: generate_id 返回的整数
    :param epoch: 生成该 ID 时使用的起始时间戳（毫秒）
    :return: SnowflakeID，其中 timestamp 为绝对毫秒时间戳
    """
    if snowflake_id < 0:
        raise ValueError(f"snowflake ID 不能为负数: {snowflake_id}")
    return SnowflakeID(
        timestamp=(snowflake_id >> TIMESTAMP_LEFT_SHIFT) + epoch,
        worker_id=(snowflake_id >> WORKER_ID_SHIFT) & MAX_WORKER_ID,
        datacenter_id=(snowflake_id >> DATACENTER_ID_SHIFT) & MAX_DATACENTER_ID,
        sequence=snowflake_id & MAX_SEQUENCE,
    )


def _current_millis() -> int:
    return int(time.time() * 1000)  # 当前毫秒时间戳


def _check_identity(field: str, value, max_value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidIdentityError(field, value, max_value)
    if value < 0 or value > max_value:
        raise InvalidIdentityError(field, value, max_value)
    return value


class SnowflakeIDGenerator:
    """
    线程安全的 snowflake ID 生成器，每个节点 (worker_id, datacenter_id) 一个实例。

    同一毫秒内最多生成 4096 个 ID，超出后释放锁并短暂休眠，直到时钟进入下一毫秒。
    时间戳字段不做掩码：(当前时间 - epoch) 超过 41 位后，结果会超出 63 位，
    此时只记录一次警告日志，调用方需要在此之前更换 epoch。

    :param worker_id: 工作id，0 ~ 31
    :param datacenter_id: 数据中心id，0 ~ 31
    :param epoch: 起始时间戳（毫秒），默认 Unix 纪元
    :param clock: 返回当前毫秒时间戳的函数，默认读取系统时钟
    :param on_clock_backwards: 时钟回拨时的处理方式，reset / raise / wait
    :param spin_interval: 等待下一毫秒时每次休眠的秒数
    """

    def __init__(self, worker_id: int = 0, datacenter_id: int = 0,
                 epoch: int = DEFAULT_EPOCH,
                 clock: Optional[Callable[[], int]] = None,
                 on_clock_backwards: str = "reset",
                 spin_interval: float = 0.0001):
        self._worker_id = _check_identity("worker_id", worker_id, MAX_WORKER_ID)
        self._datacenter_id = _check_identity("datacenter_id", datacenter_id, MAX_DATACENTER_ID)

        if on_clock_backwards not in CLOCK_BACKWARDS_POLICIES:
            raise ValueError(
                f"on_clock_backwards 必须是 {CLOCK_BACKWARDS_POLICIES} 之一, 当前值: {on_clock_backwards!r}"
            )
        if epoch < 0:
            raise ValueError(f"epoch 不能为负数: {epoch}")
        if spin_interval < 0:
            raise ValueError(f"spin_interval 不能为负数: {spin_interval}")

        self._clock = clock or _current_millis
        if epoch > self._clock():
            raise ValueError(f"epoch 不能晚于当前时间: {epoch}")

        self._epoch = epoch
        self._on_clock_backwards = on_clock_backwards
        self._spin_interval = spin_interval

        # 以下状态只在 _lock 内读写
        self._last_timestamp = 0
        self._sequence = 0
        self._overflow_warned = False
        self._lock = threading.Lock()

        logger.info(
            f"SnowflakeIDGenerator 初始化: worker_id={worker_id}, "
            f"datacenter_id={datacenter_id}, epoch={epoch}, on_clock_backwards={on_clock_backwards}"
        )

    @property
    def worker_id(self) -> int:
        return self._worker_id

    @property
    def datacenter_id(self) -> int:
        return self._datacenter_id

    @property
    def epoch(self) -> int:
        return self._epoch

    def __repr__(self):
        return (f"{type(self).__name__}(worker_id={self._worker_id}, "
                f"datacenter_id={self._datacenter_id}, epoch={self._epoch})")

    def generate_id(self) -> int:
        while True:
            with self._lock:
                timestamp = self._clock()

                if timestamp == self._last_timestamp:
                    if self._sequence < MAX_SEQUENCE:
                        self._sequence += 1
                        return self._compose(timestamp, self._sequence)
                    # 当前毫秒序号用完，释放锁等待下一毫秒
                elif timestamp < self._last_timestamp and self._on_clock_backwards != "reset":
                    if self._on_clock_backwards == "raise":
                        raise ClockMovedBackwardsError(timestamp, self._last_timestamp)
                    # wait: 等待时钟追上上次时间戳
                else:
                    if timestamp < self._last_timestamp:
                        logger.warning(
                            f"检测到时钟回拨: 当前时间戳 {timestamp}, 上次时间戳 {self._last_timestamp}, "
                            f"序列号已重置，可能产生重复ID"
                        )
                    self._last_timestamp = timestamp
                    self._sequence = 0
                    return self._compose(timestamp, 0)

            time.sleep(self._spin_interval)

    next_id = generate_id

    def parse(self, snowflake_id: int) -> SnowflakeID:
        return parse_id(snowflake_id, self._epoch)

    def _compose(self, timestamp: int, sequence: int) -> int:
        elapsed = timestamp - self._epoch
        if elapsed > MAX_TIMESTAMP and not self._overflow_warned:
            self._overflow_warned = True
            logger.warning(
                f"时间戳超出 {TIMESTAMP_BITS} 位容量: {elapsed} > {MAX_TIMESTAMP}，"
                f"生成的ID将超过 63 位，请更换 epoch"
            )
        return (elapsed << TIMESTAMP_LEFT_SHIFT) | \
               (self._worker_id << WORKER_ID_SHIFT) | \
               (self._datacenter_id << DATACENTER_ID_SHIFT) | \
               sequence
