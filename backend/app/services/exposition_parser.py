"""
指标文本解析模块 (Metrics Exposition Parser)

把反向代理 /metrics 返回的文本解析为扁平的指标样本列表。
每行按两遍尝试：先匹配带标签形式 name{k="v",...} value [timestamp]，
再匹配无标签形式 name value [timestamp]。注释行和空行跳过，
格式错误的行静默丢弃，上游文本不保证规范，部分数据好过整轮失败。
"""
import logging
import re
from dataclasses import dataclass, field
from typing import NamedTuple, Optional, Union

logger = logging.getLogger(__name__)

_NAME = r"[a-zA-Z_:][a-zA-Z0-9_:]*"

# 带标签形式 (labeled form)
LABELED_LINE = re.compile(
    rf"^(?P<name>{_NAME})\{{(?P<labels>.*)\}}\s+(?P<value>\S+)(?:\s+(?P<timestamp>-?\d+))?\s*$"
)
# 无标签形式 (unlabeled form)
UNLABELED_LINE = re.compile(
    rf"^(?P<name>{_NAME})\s+(?P<value>\S+)(?:\s+(?P<timestamp>-?\d+))?\s*$"
)
# 单个标签对，值内允许 \" \\ \n 转义
LABEL_PAIR = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*"((?:[^"\\]|\\.)*)"\s*(,|$)')

_ESCAPES = {"\\\\": "\\", '\\"': '"', "\\n": "\n"}


@dataclass(frozen=True)
class MetricSample:
    """一行解析结果。labels 按值比较，与键顺序无关。"""
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0
    timestamp: Optional[int] = None  # epoch 毫秒


class Skip(NamedTuple):
    """被丢弃的行及原因。"""
    line: str
    reason: str


ParsedLine = Union[MetricSample, Skip]


def _unescape(value: str) -> str:
    return re.sub(r"\\[\\\"n]", lambda m: _ESCAPES[m.group(0)], value)


def _parse_labels(body: str) -> Optional[dict[str, str]]:
    """解析花括号内的标签，整体不合法时返回 None。"""
    labels: dict[str, str] = {}
    body = body.strip()
    if not body:
        return labels
    pos = 0
    while pos < len(body):
        match = LABEL_PAIR.match(body, pos)
        if not match:
            return None
        key, raw = match.group(1), match.group(2)
        if key in labels:
            return None
        labels[key] = _unescape(raw)
        pos = match.end()
    return labels


def _parse_value(token: str) -> Optional[float]:
    # float() 接受 "1_000"，指标文本格式不允许
    if "_" in token:
        return None
    try:
        return float(token)
    except ValueError:
        return None


def parse_line(line: str) -> ParsedLine:
    """解析单行，返回 MetricSample 或 Skip，单行错误从不抛异常。"""
    stripped = line.strip()
    if not stripped:
        return Skip(line, "blank")
    if stripped.startswith("#"):
        return Skip(line, "comment")

    match = LABELED_LINE.match(stripped)
    if match:
        labels = _parse_labels(match.group("labels"))
        if labels is None:
            return Skip(line, "malformed labels")
    else:
        match = UNLABELED_LINE.match(stripped)
        if not match:
            return Skip(line, "unrecognized line")
        labels = {}

    value = _parse_value(match.group("value"))
    if value is None:
        return Skip(line, "invalid value")

    ts = match.group("timestamp")
    return MetricSample(
        name=match.group("name"),
        labels=labels,
        value=value,
        timestamp=int(ts) if ts is not None else None,
    )


def parse(text: str) -> list[MetricSample]:
    """
    解析整段指标文本。

    Args:
        text: /metrics 响应正文

    Returns:
        list[MetricSample]: 按原文顺序排列的样本

    Raises:
        TypeError: text 不是字符串
    """
    if not isinstance(text, str):
        raise TypeError(f"metrics text must be str, got {type(text).__name__}")

    samples: list[MetricSample] = []
    malformed = 0
    for line in text.splitlines():
        result = parse_line(line)
        if isinstance(result, MetricSample):
            samples.append(result)
        elif result.reason not in ("blank", "comment"):
            malformed += 1

    if malformed:
        logger.debug("Exposition parse: %d samples, %d malformed lines skipped", len(samples), malformed)
    return samples
