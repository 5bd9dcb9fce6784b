# -*- coding: utf-8 -*-
"""
CLI验证器模块
"""

from pathlib import Path
from typing import List, Optional, Tuple

from ..presenter import SUPPORTED_FORMATS


def validate_output_formats(format_spec: str) -> List[str]:
    """
    验证输出格式

    Args:
        format_spec: 逗号分隔的输出格式，如 "json,xlsx"

    Returns:
        List[str]: 验证后的格式列表

    Raises:
        ValueError: 如果格式不合法
    """
    if not format_spec or not format_spec.strip():
        raise ValueError("输出格式不能为空")

    formats = [fmt.strip() for fmt in format_spec.split(',')]
    for fmt in formats:
        if not fmt:
            raise ValueError("输出格式不能为空字符串")
        if fmt not in SUPPORTED_FORMATS:
            raise ValueError(f"不支持的输出格式: {fmt}。支持的格式: {', '.join(SUPPORTED_FORMATS)}")

    if len(formats) != len(set(formats)):
        raise ValueError("输出格式不能重复")
    return formats


def parse_thread_indices(thread_spec: Optional[str], thread_count: int) -> List[int]:
    """
    解析线程下标

    Args:
        thread_spec: 逗号分隔的线程下标，"all" 或空表示全部线程
        thread_count: profile 中的线程数

    Returns:
        List[int]: 线程下标列表

    Raises:
        ValueError: 如果下标不合法或越界
    """
    if not thread_spec or thread_spec.strip() == 'all':
        return list(range(thread_count))

    indices = []
    for part in thread_spec.split(','):
        part = part.strip()
        if not part:
            continue
        try:
            index = int(part)
        except ValueError:
            raise ValueError(f"线程下标必须是整数: {part}")
        if not 0 <= index < thread_count:
            raise ValueError(f"线程下标越界: {index} (共 {thread_count} 个线程)")
        if index not in indices:
            indices.append(index)
    if not indices:
        raise ValueError("没有指定任何线程")
    return indices


def parse_time_range(range_spec: Optional[str]) -> Optional[Tuple[float, float]]:
    """
    解析时间范围 "start,end" (毫秒)

    Returns:
        Optional[Tuple[float, float]]: 未指定时返回 None
    """
    if not range_spec or not range_spec.strip():
        return None

    parts = [part.strip() for part in range_spec.split(',')]
    if len(parts) != 2:
        raise ValueError(f"时间范围格式应为 start,end: {range_spec}")
    try:
        start, end = float(parts[0]), float(parts[1])
    except ValueError:
        raise ValueError(f"时间范围必须是数字: {range_spec}")
    if start > end:
        raise ValueError(f"时间范围起点大于终点: {range_spec}")
    return start, end


def validate_cache_options(max_count: int, max_age_days: float) -> None:
    """验证符号缓存参数"""
    if max_count < 1:
        raise ValueError(f"--cache-max-count 必须为正数: {max_count}")
    if max_age_days <= 0:
        raise ValueError(f"--cache-max-age-days 必须为正数: {max_age_days}")


def validate_file(file_path: str) -> bool:
    """验证文件是否存在且为 JSON 格式"""
    path = Path(file_path)
    if not path.exists():
        print(f"错误: 文件不存在: {file_path}")
        return False

    suffixes = [suffix.lower() for suffix in path.suffixes]
    if '.json' not in suffixes:
        print(f"警告: 文件可能不是 JSON 格式: {file_path}")

    return True
