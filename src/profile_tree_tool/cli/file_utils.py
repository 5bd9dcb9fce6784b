"""
文件处理工具模块
"""

import glob
import os
from pathlib import Path
from typing import List, Optional

PROFILE_SUFFIXES = ('.json', '.json.gz')


def is_profile_file(file_path: str) -> bool:
    return file_path.lower().endswith(PROFILE_SUFFIXES)


def parse_file_paths(file_pattern: str) -> List[str]:
    """
    解析文件路径，支持 glob 模式和目录

    Args:
        file_pattern: 文件路径、目录或 glob 模式

    Returns:
        List[str]: 匹配的 profile 文件路径列表 (.json / .json.gz)
    """
    if os.path.isdir(file_pattern):
        matched_files = glob.glob(os.path.join(file_pattern, '*'))
        profile_files = [f for f in matched_files if is_profile_file(f)]
        if not profile_files:
            raise ValueError(f"目录 {file_pattern} 中没有找到任何 profile 文件")
        return sorted(profile_files)

    if '*' in file_pattern or '?' in file_pattern or '[' in file_pattern:
        matched_files = glob.glob(file_pattern)
        if not matched_files:
            raise ValueError(f"glob 模式 {file_pattern} 没有匹配到任何文件")

        profile_files = [f for f in matched_files if is_profile_file(f)]
        if not profile_files:
            raise ValueError(f"glob 模式 {file_pattern} 没有匹配到任何 JSON 文件")

        return sorted(profile_files)

    if not os.path.exists(file_pattern):
        raise ValueError(f"文件不存在: {file_pattern}")

    if not is_profile_file(file_pattern):
        raise ValueError(f"文件不是 JSON 格式: {file_pattern}")

    return [file_pattern]


def profile_stem(file_path: str) -> str:
    """去掉 .json / .json.gz 后缀的文件名"""
    name = Path(file_path).name
    for suffix in PROFILE_SUFFIXES[::-1]:
        if name.lower().endswith(suffix):
            return name[:-len(suffix)]
    return Path(file_path).stem


def default_output_path(input_path: str, tag: str, output: Optional[str] = None) -> Path:
    """
    输出文件路径

    未指定 output 时在输入文件旁生成 "<stem>.<tag>.json"，
    保留输入的 .gz 压缩。
    """
    if output:
        return Path(output)
    compressed = input_path.lower().endswith('.gz')
    suffix = '.json.gz' if compressed else '.json'
    return Path(input_path).parent / f"{profile_stem(input_path)}.{tag}{suffix}"
